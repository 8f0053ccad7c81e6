"""
puterfs - asyncio client for a remote file system.

    import asyncio
    from puterfs import FileSystem

    async def main():
        async with FileSystem(token, "https://api.puter.com", "my-app") as fs:
            for item in await fs.readdir("/"):
                print(item["name"])

    asyncio.run(main())
"""

from puterfs.FileSystem import (
    AuthenticationFailed,
    ChannelError,
    ConnectionState,
    CredentialRequired,
    Environment,
    FileSystem,
    FileSystemConfig,
    FileSystemError,
    NetworkError,
    ServerError,
    create_client,
    load_config,
)

__version__ = "0.1.0"

__all__ = [
    "FileSystem",
    "create_client",
    "FileSystemConfig",
    "load_config",
    "ConnectionState",
    "Environment",
    "FileSystemError",
    "AuthenticationFailed",
    "CredentialRequired",
    "NetworkError",
    "ServerError",
    "ChannelError",
]
