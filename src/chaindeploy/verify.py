# verify.py
from __future__ import annotations

import json
import logging
import time
from typing import Any, Optional, Sequence

import requests

from .artifacts import ArtifactStore
from .errors import ArtifactNotFound, VerificationError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30


class Verifier:
    """
    Best-effort source verification.

    verify() returns None on success and a VerificationError on failure.
    It never raises: callers get the error as a value and decide how loud
    to be about it.
    """

    def verify(
        self,
        address: str,
        constructor_args: Sequence[Any],
        *,
        contract: str | None = None,
    ) -> Optional[VerificationError]:
        raise NotImplementedError


class EtherscanVerifier(Verifier):
    """
    Etherscan-compatible API (also Blockscout, Polygonscan, ...).

    One attempt = one verifysourcecode submission plus a bounded number of
    status polls, all inside `timeout` seconds. Each HTTP call gets at most
    `request_timeout`, and never more than what is left of the attempt, so
    an attempt always ends within the orchestrator's wait.
    """

    def __init__(
        self,
        api_url: str,
        api_key: str,
        artifacts: ArtifactStore,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        request_timeout: float = 10.0,
        poll_interval: float = 3.0,
        max_polls: int = 6,
        session: requests.Session | None = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.artifacts = artifacts
        self.timeout = timeout
        self.request_timeout = request_timeout
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        self.session = session or requests.Session()

    def verify(self, address, constructor_args, *, contract=None):
        deadline = time.monotonic() + self.timeout
        try:
            self._verify(address, list(constructor_args), contract, deadline)
            return None
        except VerificationError as e:
            return e
        except requests.RequestException as e:
            return VerificationError(address, f"request failed: {e}")
        except (ArtifactNotFound, ValueError, KeyError, OSError) as e:
            return VerificationError(address, f"{type(e).__name__}: {e}")

    def _remaining(self, address: str, deadline: float) -> float:
        left = deadline - time.monotonic()
        if left <= 0:
            raise VerificationError(address, f"timed out after {self.timeout:g}s")
        return left

    def _submit(self, address: str, constructor_args: list, contract: str, deadline: float) -> str:
        artifact = self.artifacts.load(contract)
        build = artifact.build_info()

        data = {
            "apikey": self.api_key,
            "module": "contract",
            "action": "verifysourcecode",
            "contractaddress": address,
            "sourceCode": json.dumps(build["input"]),
            "codeformat": "solidity-standard-json-input",
            "contractname": artifact.fully_qualified_name,
            "compilerversion": "v" + build["solcLongVersion"],
            # sic: the API spells it this way
            "constructorArguements": artifact.encode_constructor_args(constructor_args).hex(),
        }
        timeout = min(self.request_timeout, self._remaining(address, deadline))
        resp = self.session.post(self.api_url, data=data, timeout=timeout)
        resp.raise_for_status()
        body = resp.json()

        if str(body.get("status")) != "1":
            raise VerificationError(address, str(body.get("result") or body.get("message") or "rejected"))
        return str(body["result"])

    def _poll(self, address: str, guid: str, deadline: float) -> None:
        params = {
            "apikey": self.api_key,
            "module": "contract",
            "action": "checkverifystatus",
            "guid": guid,
        }
        for _ in range(self.max_polls):
            time.sleep(min(self.poll_interval, self._remaining(address, deadline)))
            timeout = min(self.request_timeout, self._remaining(address, deadline))
            resp = self.session.get(self.api_url, params=params, timeout=timeout)
            resp.raise_for_status()
            body = resp.json()
            result = str(body.get("result", ""))
            if str(body.get("status")) == "1":
                logger.debug("verification of %s: %s", address, result)
                return
            if "pending" in result.lower():
                continue
            raise VerificationError(address, result or "rejected")
        raise VerificationError(address, f"still pending after {self.max_polls} checks")

    def _verify(self, address: str, constructor_args: list, contract: str | None, deadline: float) -> None:
        if not contract:
            raise VerificationError(address, "no contract name recorded, cannot locate sources")
        guid = self._submit(address, constructor_args, contract, deadline)
        logger.info("Submitted %s at %s for verification (guid %s)", contract, address, guid)
        self._poll(address, guid, deadline)
