"""
Configuration for NAS Agent.

Reads from environment variables with sensible defaults.
"""

import os
from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""
    
    # Agent identity
    agent_name: str = os.getenv("NAS_AGENT_NAME", "nas-agent")
    hostname: str = os.getenv("HOSTNAME", "localhost")
    
    # API server
    api_host: str = os.getenv("NAS_AGENT_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("NAS_AGENT_PORT", "8080"))
    cors_origins: List[str] = ["*"]
    
    # SSL configuration
    ssl_enabled: bool = os.getenv("NAS_AGENT_SSL_ENABLED", "false").lower() == "true"
    ssl_cert_path: str = os.getenv("NAS_AGENT_SSL_CERT", "/etc/nas-agent/ssl/server.crt")
    ssl_key_path: str = os.getenv("NAS_AGENT_SSL_KEY", "/etc/nas-agent/ssl/server.key")
    
    # Database
    database_url: str = os.getenv("NAS_AGENT_DATABASE_URL", "sqlite:///easynas.db")
    
    # Authentication
    jwt_secret: str = os.getenv("NAS_AGENT_JWT_SECRET", "change-me-to-a-long-random-secret")
    jwt_algorithm: str = "HS256"
    token_ttl_seconds: int = int(os.getenv("NAS_AGENT_TOKEN_TTL", "7200"))
    admin_email: str = os.getenv("NAS_AGENT_ADMIN_EMAIL", "admin@easy.nas")
    admin_password: str = os.getenv("NAS_AGENT_ADMIN_PASSWORD", "admin")
    
    # ZFS configuration
    default_pool: str = os.getenv("NAS_AGENT_DEFAULT_POOL", "naspool")
    zfs_binary: str = os.getenv("ZFS_BINARY", "/usr/sbin/zfs")
    zpool_binary: str = os.getenv("ZPOOL_BINARY", "/usr/sbin/zpool")
    command_timeout_seconds: int = int(os.getenv("NAS_AGENT_COMMAND_TIMEOUT", "60"))
    
    # NFS
    # Always granted read-write on every published share
    admin_client_ip: str = os.getenv("NAS_AGENT_ADMIN_CLIENT_IP", "10.0.0.1")
    mount_root: str = os.getenv("NAS_AGENT_MOUNT_ROOT", "/")
    
    # Ownership normalization after publish
    chown_binary: str = os.getenv("CHOWN_BINARY", "/usr/bin/chown")
    sudo_binary: str = os.getenv("SUDO_BINARY", "/usr/bin/sudo")
    use_sudo: bool = os.getenv("NAS_AGENT_USE_SUDO", "true").lower() == "true"
    share_owner: str = os.getenv("NAS_AGENT_SHARE_OWNER", "nobody:nogroup")
    
    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    
    class Config:
        env_prefix = "NAS_AGENT_"


settings = Settings()
