"""
Mosquitto Manager - Certificate Bundle
========================================
Generates a CA, a server certificate and a test client certificate with the
``openssl`` command-line tool. Only the output paths matter to the rest of
the system; they are what the user puts into global_settings.certificates.

The CA is reused when ca.key and ca.crt already exist, so previously issued
client certificates stay valid. Server and client certificates are
regenerated every time.
"""

import logging
import os
from dataclasses import asdict, dataclass
from typing import Sequence

from brokerctl.credentials import run_tool
from brokerctl.errors import CertificateError, ToolError


logger = logging.getLogger(__name__)

DEFAULT_OPENSSL_COMMAND = ("openssl",)
VALIDITY_DAYS = "3650"


@dataclass(frozen=True)
class CertificateBundle:
    ca_path: str
    cert_path: str
    key_path: str
    client_cert_path: str
    client_key_path: str

    def to_dict(self) -> dict:
        return asdict(self)


async def _issue(openssl: Sequence[str], name: str, subject: str, cert_dir: str,
                 ca_crt: str, ca_key: str) -> tuple[str, str]:
    key = os.path.join(cert_dir, f"{name}.key")
    csr = os.path.join(cert_dir, f"{name}.csr")
    crt = os.path.join(cert_dir, f"{name}.crt")
    try:
        await run_tool([*openssl, "genrsa", "-out", key, "2048"])
        await run_tool([*openssl, "req", "-new", "-key", key, "-out", csr, "-subj", subject])
        await run_tool([
            *openssl, "x509", "-req", "-in", csr, "-CA", ca_crt, "-CAkey", ca_key,
            "-CAcreateserial", "-out", crt, "-days", VALIDITY_DAYS,
        ])
    finally:
        if os.path.exists(csr):
            os.remove(csr)
    return crt, key


async def generate_certificate_bundle(
    cert_dir: str, openssl: Sequence[str] = DEFAULT_OPENSSL_COMMAND
) -> CertificateBundle:
    """
    Create (or refresh) the TLS material under ``cert_dir``.

    Args:
        cert_dir: Output directory (created if missing).
        openssl:  Base argv of the openssl tool.

    Returns:
        Paths of the generated files.

    Raises:
        CertificateError: If any openssl invocation fails.
    """
    os.makedirs(cert_dir, exist_ok=True)
    ca_key = os.path.join(cert_dir, "ca.key")
    ca_crt = os.path.join(cert_dir, "ca.crt")

    try:
        if not os.path.exists(ca_key) or not os.path.exists(ca_crt):
            logger.info("[CERTS] Generating CA...")
            await run_tool([
                *openssl, "req", "-new", "-x509", "-days", VALIDITY_DAYS,
                "-extensions", "v3_ca", "-keyout", ca_key, "-out", ca_crt,
                "-nodes", "-subj", "/CN=Mosquitto CA",
            ])

        logger.info("[CERTS] Generating server certificate...")
        server_crt, server_key = await _issue(
            openssl, "server", "/CN=localhost", cert_dir, ca_crt, ca_key)

        logger.info("[CERTS] Generating client certificate...")
        client_crt, client_key = await _issue(
            openssl, "client", "/CN=client", cert_dir, ca_crt, ca_key)
    except ToolError as e:
        logger.error("[CERTS] Certificate generation failed: %s", e)
        raise CertificateError(str(e), returncode=e.returncode, stderr=e.stderr) from e

    return CertificateBundle(
        ca_path=ca_crt,
        cert_path=server_crt,
        key_path=server_key,
        client_cert_path=client_crt,
        client_key_path=client_key,
    )
