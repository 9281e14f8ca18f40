from typing import Protocol


class CredentialProviderPort(Protocol):
    async def get_short_lived_credential(self) -> str: ...
