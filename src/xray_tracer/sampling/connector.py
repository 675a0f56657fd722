"""
Connector fetching centralized sampling rules through the daemon's TCP proxy.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field, ValidationError

from ..config import DaemonAddress
from .rules import SamplingRule

GET_SAMPLING_RULES_PATH = "/GetSamplingRules"


class _RemoteRule(BaseModel):
    """Sampling rule as returned by the GetSamplingRules API."""
    rule_name: str = Field(..., alias="RuleName")
    priority: int = Field(..., alias="Priority")
    fixed_rate: float = Field(..., alias="FixedRate")
    reservoir_size: int = Field(..., alias="ReservoirSize")
    service_name: str = Field("*", alias="ServiceName")
    service_type: str = Field("*", alias="ServiceType")
    host: str = Field("*", alias="Host")
    http_method: str = Field("*", alias="HTTPMethod")
    url_path: str = Field("*", alias="URLPath")
    resource_arn: str = Field("*", alias="ResourceARN")
    version: int = Field(1, alias="Version")
    attributes: Dict[str, str] = Field(default_factory=dict, alias="Attributes")

    class Config:
        """Pydantic configuration."""
        extra = "allow"

    def to_sampling_rule(self) -> SamplingRule:
        return SamplingRule(
            name=self.rule_name,
            priority=self.priority,
            host=self.host,
            http_method=self.http_method,
            url_path=self.url_path,
            service_name=self.service_name,
            fixed_target=self.reservoir_size,
            rate=self.fixed_rate,
        )


@dataclass
class DaemonConnectorConfig:
    """Configuration for the daemon proxy connection."""
    daemon_address: DaemonAddress
    timeout_seconds: float = 2.0


class DaemonSamplingConnector:
    """
    Fetches centralized sampling rules from the backend via the local daemon.
    """

    def __init__(self, config: DaemonConnectorConfig, client: Optional[httpx.Client] = None):
        """
        Initialize the connector.

        Args:
            config: Daemon address and timeout
            client: Optional preconfigured httpx client, mainly for tests
        """
        self.config = config
        self.logger = logging.getLogger(self.__class__.__name__)
        self.client = client or httpx.Client(
            base_url=config.daemon_address.tcp_base_url,
            timeout=config.timeout_seconds,
        )

    def fetch_sampling_rules(self) -> List[SamplingRule]:
        """
        Fetch the current sampling rules.

        Returns:
            Rules ordered by priority; an empty list if the daemon is
            unreachable or the response cannot be parsed
        """
        records = []
        next_token: Optional[str] = None
        while True:
            payload: Dict[str, Any] = {"NextToken": next_token} if next_token else {}
            try:
                response = self.client.post(GET_SAMPLING_RULES_PATH, json=payload)
                response.raise_for_status()
                body = response.json()
            except (httpx.HTTPError, ValueError) as e:
                self.logger.error(f"Failed to fetch sampling rules from the daemon: {e}")
                return []

            records.extend(body.get("SamplingRuleRecords") or [])
            next_token = body.get("NextToken")
            if not next_token:
                break

        rules = []
        for record in records:
            raw_rule = record.get("SamplingRule") if isinstance(record, dict) else None
            if not raw_rule:
                continue
            try:
                remote = _RemoteRule.model_validate(raw_rule)
            except ValidationError as e:
                self.logger.warning(f"Skipping malformed sampling rule: {e}")
                continue
            if remote.version != 1:
                self.logger.warning(f"Skipping sampling rule '{remote.rule_name}' with version {remote.version}")
                continue
            rules.append(remote.to_sampling_rule())

        rules.sort(key=lambda rule: rule.priority)
        self.logger.info(f"Fetched {len(rules)} sampling rules from the daemon")
        return rules

    def test_connection(self) -> bool:
        """
        Test the connection to the daemon's TCP proxy.

        Returns:
            True if the daemon answered, False otherwise
        """
        try:
            response = self.client.post(GET_SAMPLING_RULES_PATH, json={})
            response.raise_for_status()
            self.logger.info("Connection to the daemon successful")
            return True
        except httpx.HTTPError as e:
            self.logger.error(f"Connection test failed: {e}")
            return False

    def close(self) -> None:
        self.client.close()
