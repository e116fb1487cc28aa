from typing import Dict, List, Optional, Protocol

from mailwatch.models import Account


# -----------------------------
# Account configuration storage
# -----------------------------
class ConfigStore(Protocol):
    """Supplies and persists per-account polling configuration."""
    def list_accounts(self) -> List[Account]: ...
    def get(self, account_id: str) -> Optional[Account]: ...
    def save(self, account: Account) -> None: ...
    def delete(self, account_id: str) -> bool: ...


class InMemoryConfigStore:
    """Process-local account store; contents are lost on restart."""
    def __init__(self, accounts: Optional[List[Account]] = None) -> None:
        self._data: Dict[str, Account] = {}
        for account in accounts or []:
            self.save(account)

    def list_accounts(self) -> List[Account]:
        return list(self._data.values())

    def get(self, account_id: str) -> Optional[Account]:
        return self._data.get(account_id)

    def save(self, account: Account) -> None:
        self._data[account.account_id] = account

    def delete(self, account_id: str) -> bool:
        return self._data.pop(account_id, None) is not None
