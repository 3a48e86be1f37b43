"""
polyroute Configuration Management

Handles loading and validation of configuration from TOML file, and
logging setup for applications embedding the router.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional
from dataclasses import dataclass, field

import toml

from .errors import InvalidArgumentError


# Default configuration path
DEFAULT_CONFIG_PATH = Path("/etc/polyroute/config.toml")

# Log line format shared by every polyroute logger
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class RingConfig:
    """Ring parameter configuration (defaults to the SAFE set)."""
    degree: int = 64
    modulus: int = 65537
    num_characters: int = 8


@dataclass
class RouterConfig:
    """Sheaf router configuration."""
    success_threshold: float = 1e-6  # obstruction below this = consistent
    gluing_tolerance: float = 1e-6   # L2 distance accepted at route time
    max_iterations: int = 16         # least-squares sweeps when gluings are present


@dataclass
class IdentityConfig:
    """Identity and password verifier configuration."""
    scrypt_n: int = 2 ** 14
    scrypt_r: int = 8
    scrypt_p: int = 1
    salt_length: int = 16  # bytes
    fingerprint_size: int = 8  # bytes


@dataclass
class Config:
    """
    Complete polyroute configuration.
    """
    # Sub-configurations
    ring: RingConfig = field(default_factory=RingConfig)
    router: RouterConfig = field(default_factory=RouterConfig)
    identity: IdentityConfig = field(default_factory=IdentityConfig)

    # Paths
    config_path: Path = field(default_factory=lambda: DEFAULT_CONFIG_PATH)

    # Logging
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> 'Config':
        """
        Load configuration from file.

        Args:
            config_path: Path to config file (default: /etc/polyroute/config.toml)

        Returns:
            Loaded configuration (defaults if the file does not exist)

        Raises:
            InvalidArgumentError: If the file is not valid TOML or holds
                values of the wrong type
        """
        path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
        config = cls()
        config.config_path = path

        if not path.exists():
            return config

        try:
            data = toml.load(path)
        except toml.TomlDecodeError as e:
            raise InvalidArgumentError(f"Invalid config file {path}: {e}") from e

        try:
            config._apply_dict(data)
        except (TypeError, ValueError) as e:
            raise InvalidArgumentError(f"Invalid config value in {path}: {e}") from e

        config.validate()
        return config

    def _apply_dict(self, data: Dict[str, Any]) -> None:
        """Apply dictionary data to config."""
        # Top-level settings
        if "log_level" in data:
            self.log_level = str(data["log_level"]).upper()
        if "log_file" in data:
            self.log_file = Path(data["log_file"])

        # Ring config
        if "ring" in data:
            r = data["ring"]
            if "degree" in r:
                self.ring.degree = int(r["degree"])
            if "modulus" in r:
                self.ring.modulus = int(r["modulus"])
            if "num_characters" in r:
                self.ring.num_characters = int(r["num_characters"])

        # Router config
        if "router" in data:
            s = data["router"]
            if "success_threshold" in s:
                self.router.success_threshold = float(s["success_threshold"])
            if "gluing_tolerance" in s:
                self.router.gluing_tolerance = float(s["gluing_tolerance"])
            if "max_iterations" in s:
                self.router.max_iterations = int(s["max_iterations"])

        # Identity config
        if "identity" in data:
            i = data["identity"]
            if "scrypt_n" in i:
                self.identity.scrypt_n = int(i["scrypt_n"])
            if "scrypt_r" in i:
                self.identity.scrypt_r = int(i["scrypt_r"])
            if "scrypt_p" in i:
                self.identity.scrypt_p = int(i["scrypt_p"])
            if "salt_length" in i:
                self.identity.salt_length = int(i["salt_length"])
            if "fingerprint_size" in i:
                self.identity.fingerprint_size = int(i["fingerprint_size"])

    def validate(self) -> None:
        """
        Validate configuration.

        Ring parameters are validated in full by RingParameters itself;
        this only checks the settings that have no other owner.

        Raises:
            InvalidArgumentError: If configuration is invalid
        """
        if self.log_level not in VALID_LOG_LEVELS:
            raise InvalidArgumentError(f"Invalid log level: {self.log_level}")

        if self.router.success_threshold <= 0:
            raise InvalidArgumentError(
                f"Invalid success threshold: {self.router.success_threshold}")

        if self.router.gluing_tolerance < 0:
            raise InvalidArgumentError(
                f"Invalid gluing tolerance: {self.router.gluing_tolerance}")

        if self.router.max_iterations < 1:
            raise InvalidArgumentError(
                f"Invalid max iterations: {self.router.max_iterations}")

        # scrypt requires a power-of-two cost parameter above 1
        n = self.identity.scrypt_n
        if n < 2 or n & (n - 1):
            raise InvalidArgumentError(f"Invalid scrypt cost: {n}")

        if self.identity.salt_length < 8:
            raise InvalidArgumentError(
                f"Invalid salt length: {self.identity.salt_length}")

        if not 1 <= self.identity.fingerprint_size <= 64:
            raise InvalidArgumentError(
                f"Invalid fingerprint size: {self.identity.fingerprint_size}")


def configure_logging(config: Optional[Config] = None) -> logging.Logger:
    """
    Set up root logging from configuration.

    Args:
        config: Loaded configuration (defaults if None)

    Returns:
        The top-level "polyroute" logger
    """
    config = config or Config()

    handlers = [logging.StreamHandler()]
    if config.log_file:
        handlers.append(logging.FileHandler(config.log_file))

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
    )
    return logging.getLogger("polyroute")
