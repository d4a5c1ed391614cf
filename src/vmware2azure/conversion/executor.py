"""Remote PowerShell execution on the conversion host over WinRM."""

from __future__ import annotations

import base64
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Iterable, Optional

import requests
import winrm
from winrm.exceptions import WinRMError, WinRMOperationTimeoutError, WinRMTransportError

from vmware2azure.errors import TransportError
from vmware2azure.utils.logging import get_logger

logger = get_logger(__name__)

CLIXML_HEADER = "#< CLIXML"
_CLIXML_NS = "{http://schemas.microsoft.com/powershell/2004/04}"
_ESCAPE = re.compile(r"_x([0-9A-Fa-f]{4})_")


@dataclass(frozen=True)
class OutputRecord:
    """One chunk of output as returned by the transport."""
    stdout: str = ""
    stderr: str = ""


@dataclass(frozen=True)
class ConversionResult:
    """Captured output of one remote script execution."""
    stdout: str
    stderr: str
    status_code: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return not self.stderr.strip()

    @classmethod
    def from_records(cls, records: Iterable[OutputRecord], status_code: Optional[int] = None) -> "ConversionResult":
        """Concatenate records in emission order."""
        records = list(records)
        return cls(
            stdout="".join(r.stdout for r in records),
            stderr="".join(r.stderr for r in records),
            status_code=status_code,
        )


@dataclass(frozen=True)
class HostCredentials:
    username: str
    password: str
    transport: str = "ntlm"


def encode_powershell(script: str) -> str:
    """Base64 of the UTF-16LE script, as ``powershell -EncodedCommand`` expects."""
    return base64.b64encode(script.encode("utf_16_le")).decode("ascii")


def clean_clixml(stderr: str) -> str:
    """Reduce a CLIXML-serialized error stream to the text of its error records.

    PowerShell serializes non-output streams (errors, progress, verbose) as
    CLIXML when stdout is not a console. Only records tagged ``S="Error"``
    are failures; progress and verbose records are dropped.
    """
    if not stderr.startswith(CLIXML_HEADER):
        return stderr

    xml_text = stderr[len(CLIXML_HEADER):].lstrip("\r\n")
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError:
        logger.warning("Could not parse CLIXML error stream, keeping it verbatim")
        return stderr

    messages = []
    for node in root.iter(f"{_CLIXML_NS}S"):
        if node.get("S") == "Error" and node.text:
            text = _ESCAPE.sub(lambda m: chr(int(m.group(1), 16)), node.text)
            messages.append(text)
    return "".join(messages).strip()


class RemoteScriptExecutor:
    """Runs PowerShell scripts on a Windows host through WinRM.

    The executor is a transport only: it never decides whether the script
    succeeded. A single call is a single round trip; nothing is retried.
    """

    def __init__(self, server_cert_validation: str = "ignore", read_timeout_sec: Optional[int] = None):
        self.server_cert_validation = server_cert_validation
        self.read_timeout_sec = read_timeout_sec

    def _session(self, host: str, port: int, credentials: HostCredentials) -> winrm.Session:
        endpoint = f"http://{host}:{port}/wsman"
        kwargs = {
            "auth": (credentials.username, credentials.password),
            "transport": credentials.transport,
            "server_cert_validation": self.server_cert_validation,
        }
        if self.read_timeout_sec:
            kwargs["read_timeout_sec"] = self.read_timeout_sec
            kwargs["operation_timeout_sec"] = max(self.read_timeout_sec - 10, 1)
        return winrm.Session(endpoint, **kwargs)

    def execute(self, host: str, port: int, credentials: HostCredentials, script: str) -> ConversionResult:
        """Execute ``script`` on ``host`` and return its captured output.

        Raises:
            TransportError: If the host cannot be reached or rejects the session
        """
        logger.info(f"Running conversion script on {host}:{port} as {credentials.username}")
        session = self._session(host, port, credentials)

        try:
            response = session.run_cmd("powershell", ["-NoProfile", "-NonInteractive",
                                                      "-EncodedCommand", encode_powershell(script)])
        except (WinRMError, WinRMTransportError, WinRMOperationTimeoutError) as e:
            raise TransportError(f"WinRM session to {host}:{port} failed", str(e)) from e
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Cannot reach conversion host {host}:{port}", str(e)) from e

        record = OutputRecord(
            stdout=_decode(response.std_out),
            stderr=clean_clixml(_decode(response.std_err)),
        )
        result = ConversionResult.from_records([record], status_code=response.status_code)
        logger.debug(f"Conversion host exit code {response.status_code}, "
                     f"{len(result.stdout)} bytes stdout, {len(result.stderr)} bytes stderr")
        return result


def _decode(data: bytes | str | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data
