"""
Sampling rule models and matching.
"""

import json
import re
from functools import lru_cache
from pathlib import Path
from typing import List, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from ..exceptions import ConfigurationError

DEFAULT_FIXED_TARGET = 1
DEFAULT_RATE = 0.05


@lru_cache(maxsize=256)
def _compile_wildcard(pattern: str) -> "re.Pattern":
    parts = []
    for char in pattern:
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("".join(parts), re.IGNORECASE | re.DOTALL)


def wildcard_match(pattern: Optional[str], text: Optional[str]) -> bool:
    """
    Match ``text`` against a pattern where ``*`` matches any run of
    characters and ``?`` matches exactly one. Case-insensitive.
    """
    if pattern is None or pattern == "*":
        return True
    if text is None:
        return False
    return _compile_wildcard(pattern).fullmatch(text) is not None


class SamplingRequest(BaseModel):
    """Attributes of a request that sampling rules match against."""
    host: Optional[str] = Field(None, description="Request host header")
    method: Optional[str] = Field(None, description="HTTP method")
    path: Optional[str] = Field(None, description="URL path")
    service_name: Optional[str] = Field(None, description="Name of the segment being sampled")


class SamplingRule(BaseModel):
    """A sampling rule: a per-second reservoir plus a fixed rate beyond it."""
    name: str = Field("default", description="Rule name")
    description: Optional[str] = Field(None, description="Free-form description")
    priority: int = Field(10000, description="Lower values are evaluated first")
    host: str = Field("*", description="Host wildcard")
    http_method: str = Field("*", description="HTTP method wildcard")
    url_path: str = Field("*", description="URL path wildcard")
    service_name: str = Field("*", description="Service name wildcard")
    fixed_target: int = Field(DEFAULT_FIXED_TARGET, ge=0, description="Requests per second always sampled")
    rate: float = Field(DEFAULT_RATE, ge=0.0, le=1.0, description="Sampling rate beyond the fixed target")

    def matches(self, request: SamplingRequest) -> bool:
        return (
            wildcard_match(self.host, request.host)
            and wildcard_match(self.http_method, request.method)
            and wildcard_match(self.url_path, request.path)
            and wildcard_match(self.service_name, request.service_name)
        )


class LocalRulesDocument(BaseModel):
    """Local sampling rules file, version 2 format."""
    version: int = Field(2, description="Rules document version")
    rules: List[SamplingRule] = Field(default_factory=list, description="Rules in evaluation order")
    default: SamplingRule = Field(default_factory=SamplingRule, description="Fallback rule")

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "LocalRulesDocument":
        """
        Load a local sampling rules JSON document.

        Raises:
            ConfigurationError: If the file cannot be read or does not validate
        """
        try:
            with open(path, "r", encoding="utf-8") as fh:
                raw = json.load(fh)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Failed to read sampling rules '{path}': {e}") from e

        try:
            document = cls.model_validate(raw)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid sampling rules '{path}': {e}") from e

        if document.version not in (1, 2):
            raise ConfigurationError(f"Unsupported sampling rules version {document.version} in '{path}'")
        # Rules in a local file are evaluated in file order
        for index, rule in enumerate(document.rules):
            rule.priority = index
            if rule.name == "default":
                rule.name = f"local-{index}"
        return document
