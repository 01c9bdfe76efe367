"""Provider: settings plus the lazily created session pool and runner"""
import threading
from typing import Any, Dict, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from adprovider.config import ProviderSettings
from adprovider.errors import ValidationError
from adprovider.logger import get_logger
from adprovider.models.ldap import LDAPConfig
from adprovider.services.ldap import LDAPClient
from adprovider.services.powershell import CommandOptions, PSCommand
from adprovider.services.runner import CommandResult, CommandRunner
from adprovider.services.session_pool import SessionPool
from adprovider.services.transport import SessionFactory, is_local_connection

logger = get_logger("provider")


class Provider:
    """Entry point shared by every resource operation.

    Settings are frozen; the session pool is the only mutable state and its
    lifetime is the provider's.
    """

    def __init__(self, settings: ProviderSettings, factory=None, ldap_client_class=LDAPClient):
        self.settings = settings
        self._factory = factory
        self._ldap_client_class = ldap_client_class
        self._pool: Optional[SessionPool] = None
        self._runner: Optional[CommandRunner] = None
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, conf: Optional[Dict[str, Any]] = None) -> "Provider":
        """Build a provider from a configuration map (AD_* variables fill the gaps)."""
        try:
            provider_settings = ProviderSettings.from_map(conf)
        except PydanticValidationError as e:
            raise ValidationError(f"invalid provider configuration: {e}") from e
        logger.info(
            f"Provider configured for {provider_settings.winrm_hostname or 'local host'} "
            f"({provider_settings.auth_mode})"
        )
        return cls(provider_settings)

    @property
    def is_local(self) -> bool:
        return is_local_connection(self.settings)

    @property
    def pass_credentials_enabled(self) -> bool:
        """Credentials are only injected into scripts over https."""
        return self.settings.winrm_proto == "https" and self.settings.winrm_pass_credentials

    @property
    def domain_name(self) -> str:
        """Pinned domain controller, else the realm."""
        return self.settings.domain_controller or self.settings.krb_realm

    @property
    def ldap_config(self) -> LDAPConfig:
        """LDAP back-end of the same domain controller, with the WinRM credentials."""
        s = self.settings
        return LDAPConfig(
            host=s.ldap_hostname or s.domain_controller or s.winrm_hostname,
            port=s.ldap_port or None,
            protocol=s.ldap_proto,
            username=s.winrm_username,
            password=s.winrm_password,
            insecure=s.ldap_insecure,
            use_ntlm=s.winrm_use_ntlm,
        )

    def ldap_client(self) -> LDAPClient:
        """Unbound LDAP client; bind it by using it as a context manager."""
        config = self.ldap_config
        if not config.host:
            raise ValidationError("ldap lookups need ldap_hostname, domain_controller or winrm_hostname")
        return self._ldap_client_class(config)

    @property
    def operator(self) -> str:
        return self.settings.winrm_username or "local"

    @property
    def pool(self) -> SessionPool:
        with self._lock:
            if self._pool is None:
                factory = self._factory or SessionFactory(self.settings)
                self._pool = SessionPool(factory)
            return self._pool

    @property
    def runner(self) -> CommandRunner:
        pool = self.pool
        with self._lock:
            if self._runner is None:
                self._runner = CommandRunner(pool)
            return self._runner

    def options(
        self,
        json_output: bool = False,
        force_array: bool = False,
        gpo: bool = False,
        **extra,
    ) -> CommandOptions:
        """Command options derived from the provider settings.

        GPO cmdlets run through Invoke-Command when credentials are passed,
        against the local computer name when the realm is the domain name.
        """
        server = self.domain_name
        invoke_command = False
        if gpo:
            invoke_command = self.pass_credentials_enabled
            if self.settings.krb_realm and self.settings.krb_realm == server:
                server = "$env:computername"
        values = dict(
            exec_locally=self.is_local,
            pass_credentials=self.pass_credentials_enabled,
            username=self.settings.winrm_username,
            password=self.settings.winrm_password,
            server=server,
            json_output=json_output,
            force_array=force_array,
            invoke_command=invoke_command,
        )
        values.update(extra)
        return CommandOptions(**values)

    def command(self, fragments: Sequence[str], secrets: Sequence[str] = (), **kwargs) -> PSCommand:
        return PSCommand(fragments, self.options(**kwargs), secrets=secrets)

    def run(self, fragments: Sequence[str], secrets: Sequence[str] = (), **kwargs) -> CommandResult:
        """Build and run a command, raising on non-zero exit."""
        return self.runner.run_checked(self.command(fragments, secrets=secrets, **kwargs))

    def upload(self, path: str, data: bytes) -> None:
        """Write a file on the domain controller through a leased file session."""
        with self.pool.file_session() as session:
            session.upload(path, data)

    def close(self) -> None:
        with self._lock:
            pool, self._pool, self._runner = self._pool, None, None
        if pool is not None:
            pool.close()
