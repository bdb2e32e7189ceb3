from __future__ import annotations

import base64
import json
import os
import threading
from typing import Any, Optional

try:  # pragma: no cover
    import boto3  # type: ignore
except ImportError:  # pragma: no cover
    boto3 = None


class SecretResolver:
    """Resolves secret references in variable mappings.

    Supported references::

        {aws_secret = "name", key = "field"}   # AWS Secrets Manager (boto3)
        {ssm_parameter = "/path/to/param"}     # AWS SSM Parameter Store (boto3)
        {env = "VARIABLE"}                     # controller environment

    Resolved values are cached for the lifetime of the resolver, which is
    shared by the host runs of one invocation.
    """

    def __init__(self) -> None:
        self._cache: dict[tuple[str, str, Optional[str]], Any] = {}
        self._lock = threading.Lock()

    def resolve(self, values: dict[str, Any]) -> dict[str, Any]:
        return {k: self._resolve_value(v) for k, v in values.items()}

    def _resolve_value(self, value: Any) -> Any:
        if isinstance(value, dict):
            if "aws_secret" in value:
                return self._cached("aws_secret", str(value["aws_secret"]), value.get("key"))
            if "ssm_parameter" in value:
                return self._cached("ssm_parameter", str(value["ssm_parameter"]), None)
            if set(value) == {"env"}:
                name = str(value["env"])
                if name not in os.environ:
                    raise RuntimeError(f"Environment variable {name} is not set")
                return os.environ[name]
            return {k: self._resolve_value(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self._resolve_value(v) for v in value]
        return value

    def _cached(self, source: str, name: str, key: Any) -> Any:
        cache_key = (source, name, None if key is None else str(key))
        with self._lock:
            if cache_key in self._cache:
                return self._cache[cache_key]
        if source == "aws_secret":
            value = self._fetch_aws_secret(name, cache_key[2])
        else:
            value = self._fetch_ssm_parameter(name)
        with self._lock:
            self._cache[cache_key] = value
        return value

    @staticmethod
    def _client(service: str):
        if boto3 is None:
            raise RuntimeError(f"boto3 is required to resolve {service} references")
        return boto3.client(service)

    def _fetch_aws_secret(self, name: str, key: Optional[str]) -> Any:
        response = self._client("secretsmanager").get_secret_value(SecretId=name)
        secret_str = response.get("SecretString")
        if secret_str is None:
            binary = response.get("SecretBinary")
            if binary is None:
                raise RuntimeError(f"Secret {name} has no SecretString or SecretBinary")
            secret_str = base64.b64decode(binary).decode()
        if key is None:
            return secret_str
        return json.loads(secret_str)[key]

    def _fetch_ssm_parameter(self, name: str) -> str:
        response = self._client("ssm").get_parameter(Name=name, WithDecryption=True)
        return response["Parameter"]["Value"]
