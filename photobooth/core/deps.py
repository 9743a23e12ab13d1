from dataclasses import dataclass

from fastapi import Request

from photobooth.services.finalizer import Finalizer
from photobooth.services.ledger_client import LedgerClient
from photobooth.services.ledger_store import LedgerStore
from photobooth.services.provider_client import ProviderClient
from photobooth.services.storage import S3Storage
from photobooth.workers.reconciler import Reconciler


@dataclass
class Services:
    """Long-lived clients shared by every request, built once in the app lifespan"""

    store: LedgerStore
    storage: S3Storage
    finalizer: Finalizer
    ledger: LedgerClient
    provider: ProviderClient
    reconciler: Reconciler

    async def aclose(self) -> None:
        await self.reconciler.drain()
        await self.finalizer.aclose()
        await self.ledger.aclose()
        await self.provider.aclose()


def build_services() -> Services:
    store = LedgerStore()
    storage = S3Storage()
    ledger = LedgerClient()
    provider = ProviderClient()
    return Services(
        store=store,
        storage=storage,
        finalizer=Finalizer(store, storage),
        ledger=ledger,
        provider=provider,
        reconciler=Reconciler(ledger, provider),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_store(request: Request) -> LedgerStore:
    return get_services(request).store


def get_storage(request: Request) -> S3Storage:
    return get_services(request).storage


def get_finalizer(request: Request) -> Finalizer:
    return get_services(request).finalizer


def get_ledger_client(request: Request) -> LedgerClient:
    return get_services(request).ledger


def get_provider(request: Request) -> ProviderClient:
    return get_services(request).provider


def get_reconciler(request: Request) -> Reconciler:
    return get_services(request).reconciler
