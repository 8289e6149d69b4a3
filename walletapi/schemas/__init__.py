from .auth import WalletUser
from .coins import CoinPackage, CoinPackageCatalog
from .transactions import LedgerFilter, Transaction
from .purchase import PurchaseSessionSnapshot, PurchaseState
from .wallet import WalletBalanceSnapshot
