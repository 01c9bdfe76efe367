"""Kerberos helpers for WinRM SPNEGO authentication"""
import os
import subprocess
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional

from adprovider.config import ProviderSettings
from adprovider.errors import AuthError, TransportError
from adprovider.logger import get_logger

logger = get_logger("services.kerberos")

ENCTYPES = (
    "aes128-cts-hmac-sha1-96",
    "aes256-cts-hmac-sha1-96",
    "aes128-cts-hmac-sha256-128",
    "aes256-cts-hmac-sha384-192",
)
PREAUTH_TYPES = (17, 16, 15, 14)
KINIT_TIMEOUT = 30


def render_krb5_config(realm: str, kdc_host: str) -> str:
    """Build a krb5.conf for a single realm served by the given host.

    DNS lookups are disabled, so the KDC, admin server and kpasswd server all
    point at the host.

    Args:
        realm: Kerberos realm
        kdc_host: Domain controller host name

    Returns:
        krb5.conf contents
    """
    enctypes = " ".join(ENCTYPES)
    preauth = ", ".join(str(p) for p in PREAUTH_TYPES)
    domain = realm.lower()
    return (
        "[libdefaults]\n"
        f"  default_realm = {realm}\n"
        "  dns_lookup_realm = false\n"
        "  dns_lookup_kdc = false\n"
        "  udp_preference_limit = 1\n"
        f"  permitted_enctypes = {enctypes}\n"
        f"  default_tgs_enctypes = {enctypes}\n"
        f"  default_tkt_enctypes = {enctypes}\n"
        f"  preferred_preauth_types = {preauth}\n"
        "\n"
        "[realms]\n"
        f"  {realm} = {{\n"
        f"    kdc = {kdc_host}:88\n"
        f"    admin_server = {kdc_host}:749\n"
        f"    kpasswd_server = {kdc_host}\n"
        "  }\n"
        "\n"
        "[domain_realm]\n"
        f"  {domain} = {realm}\n"
        f"  .{domain} = {realm}\n"
    )


class KerberosContext:
    """Kerberos configuration and credential cache for one provider."""

    def __init__(self, settings: ProviderSettings, work_dir: Optional[Path] = None):
        self.settings = settings
        self.realm = settings.krb_realm
        self.work_dir = Path(work_dir or tempfile.mkdtemp(prefix="adprovider-krb5-"))
        if settings.krb_conf:
            self.config_path = Path(settings.krb_conf)
        else:
            self.config_path = self.work_dir / "krb5.conf"
        self.ccache = self.work_dir / "ccache"
        self._lock = threading.Lock()
        self._configured = False

    @property
    def principal(self) -> str:
        username = self.settings.winrm_username
        if "@" in username:
            return username
        return f"{username}@{self.realm}"

    @property
    def uses_keytab(self) -> bool:
        return bool(self.settings.krb_keytab)

    def environment(self) -> Dict[str, str]:
        return {
            "KRB5_CONFIG": str(self.config_path),
            "KRB5CCNAME": f"FILE:{self.ccache}",
        }

    def configure(self) -> None:
        """Write the synthesized krb5.conf (unless a file was given) and export the environment."""
        if self.settings.krb_conf:
            if not self.config_path.is_file():
                raise TransportError(f"kerberos configuration {self.config_path} not found")
        else:
            try:
                self.config_path.write_text(
                    render_krb5_config(self.realm, self.settings.winrm_hostname),
                    encoding="utf-8",
                )
            except OSError as e:
                raise TransportError(f"failed to write kerberos configuration: {e}") from e
        # GSSAPI in this process reads the same config and cache
        os.environ.update(self.environment())
        self._configured = True

    def _run(self, args, stdin: Optional[str] = None) -> subprocess.CompletedProcess:
        env = dict(os.environ)
        env.update(self.environment())
        try:
            return subprocess.run(
                args,
                input=stdin,
                capture_output=True,
                text=True,
                env=env,
                timeout=KINIT_TIMEOUT,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise TransportError(f"{args[0]} failed: {e}") from e

    def has_valid_ticket(self) -> bool:
        return self._run(["klist", "-s"]).returncode == 0

    def kinit(self) -> None:
        """Obtain a ticket from the keytab or, without one, from the password."""
        if self.uses_keytab:
            keytab = Path(self.settings.krb_keytab)
            if not keytab.is_file():
                raise TransportError(f"failed to load keytab {keytab}")
            args = ["kinit", "-k", "-t", str(keytab), self.principal]
            stdin = None
        else:
            args = ["kinit", self.principal]
            stdin = self.settings.winrm_password + "\n"

        logger.debug(f"Requesting kerberos ticket for {self.principal}")
        completed = self._run(args, stdin)
        if completed.returncode != 0:
            stderr = completed.stderr.strip()
            if "Preauthentication failed" in stderr or "Password incorrect" in stderr:
                raise AuthError(f"kinit failed for {self.principal}: {stderr}")
            raise TransportError(f"kinit failed for {self.principal}: {stderr}")

    def ensure_ticket(self) -> None:
        """Ensure a valid ticket is cached, requesting one if needed."""
        with self._lock:
            if not self._configured:
                self.configure()
            if self.has_valid_ticket():
                return
            self.kinit()
