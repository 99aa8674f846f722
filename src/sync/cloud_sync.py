"""
Offline-first sync between the local cache and a remote store.

Every mutation is applied to the local cache first and is visible at once;
the remote leg is attempted afterwards and its failure never undoes the local
change. Full passes move only records missing on one side, so anything a
failed upload left behind is found again by the next pass.
"""
import asyncio
import logging
import time
import uuid
from dataclasses import asdict, dataclass
from typing import Callable, List, Optional, Set, Tuple, Union

from api.remote_store import BILLS, PRODUCTS, RemoteNotFoundError, RemoteStore, RemoteStoreError
from database.local_storage import LocalStorage
from database.models import Bill, BillCreate, Product, ProductCreate, ProductUpdate, utc_now
from sync.connectivity import ConnectivityMonitor
from sync.events import SyncEvent, SyncEventType
from sync.reconcile import Reconciliation, bill_key, merge, product_key, reconcile
from utils.listeners import ListenerRegistry

logger = logging.getLogger(__name__)

DEFAULT_SYNC_INTERVAL = 10.0


class ProductNotFoundError(Exception):
    """The product targeted by a local mutation does not exist locally"""

    def __init__(self, product_id):
        super().__init__(f"Product not found: {product_id}")
        self.product_id = product_id


@dataclass
class SyncStatus:
    is_online: bool
    last_sync_time: float = 0.0
    sync_in_progress: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


def generate_id() -> str:
    """Millisecond timestamp plus a random suffix"""
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


class CloudSyncManager:
    """Keeps the local product and bill collections consistent with a remote store"""

    def __init__(self, local: LocalStorage, remote: RemoteStore,
                 connectivity: Optional[ConnectivityMonitor] = None,
                 sync_interval: float = DEFAULT_SYNC_INTERVAL, loop=None):
        """
        Args:
            local: Local cache, authoritative for reads
            remote: Remote store, updated best-effort
            connectivity: Online/offline signal (a private always-online monitor if omitted)
            sync_interval: Seconds between incremental change checks
            loop: Event loop for background work (defaults to the running loop)
        """
        self.local = local
        self.remote = remote
        self.connectivity = connectivity or ConnectivityMonitor()
        self.sync_interval = sync_interval
        self._loop = loop

        self.last_sync_time = 0.0
        self.sync_in_progress = False

        self._listeners = ListenerRegistry("cloud sync")
        self._unsubscribe_connectivity: Optional[Callable[[], None]] = None
        self._interval_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()
        self._initialized = False

    @property
    def is_online(self) -> bool:
        return self.connectivity.is_online

    # Lifecycle

    async def initialize(self):
        """Subscribe to connectivity, start the periodic check and run the first full sync"""
        if self._initialized:
            return
        logger.info("🔄 Cloud sync: initializing...")

        if self._loop is None:
            self._loop = asyncio.get_running_loop()

        self._unsubscribe_connectivity = self.connectivity.add_listener(self._on_connectivity_changed)
        self._interval_task = self._loop.create_task(self._sync_interval_loop())
        self._initialized = True

        await self.perform_full_sync()
        logger.info("✅ Cloud sync: initialized")

    def destroy(self):
        """Stop background work and drop every sync listener"""
        if self._unsubscribe_connectivity is not None:
            self._unsubscribe_connectivity()
            self._unsubscribe_connectivity = None

        if self._interval_task is not None:
            self._interval_task.cancel()
            self._interval_task = None

        for task in list(self._background):
            task.cancel()
        self._background.clear()

        self._listeners.clear()
        self._initialized = False
        logger.info("Cloud sync stopped")

    # Observers

    def on_sync(self, callback: Callable[[SyncEvent], object]) -> Callable[[], None]:
        """
        Register a sync event listener

        Returns:
            Callable: Unsubscribe handle
        """
        return self._listeners.add(callback)

    def _notify(self, event_type: SyncEventType, **fields):
        self._listeners.notify(SyncEvent(type=event_type, **fields))

    def get_status(self) -> SyncStatus:
        return SyncStatus(
            is_online=self.is_online,
            last_sync_time=self.last_sync_time,
            sync_in_progress=self.sync_in_progress,
        )

    # Background scheduling

    def _spawn(self, coro):
        task = self._loop.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def _on_connectivity_changed(self, online: bool):
        self._notify(SyncEventType.CONNECTIVITY_CHANGED, online=online)
        if online and not self.sync_in_progress:
            logger.info("🔄 Back online, scheduling full sync")
            self._spawn(self.perform_full_sync())
        elif not online:
            logger.info("Offline mode, periodic sync suspended")

    async def _sync_interval_loop(self):
        while True:
            await asyncio.sleep(self.sync_interval)
            try:
                await self.check_for_changes()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"❌ Periodic sync check failed: {e}", exc_info=True)
                self._notify(SyncEventType.SYNC_ERROR, error=str(e) or type(e).__name__)

    def _record_remote_failure(self, error: RemoteStoreError):
        # A missing record says nothing about the link
        if not isinstance(error, RemoteNotFoundError):
            self.connectivity.report_failure(error)

    async def check_for_changes(self) -> bool:
        """
        Cheap drift check: compare collection sizes and run a full sync on mismatch.
        Same-size drift (updates only) is not detected.

        Returns:
            bool: True if a full sync was triggered
        """
        if self.sync_in_progress or not self.is_online:
            return False

        try:
            remote_products = await self.remote.list_products()
            remote_bills = await self.remote.list_bills()
        except RemoteStoreError as e:
            logger.warning(f"⚠️ Incremental sync check failed: {e}")
            self._record_remote_failure(e)
            return False

        self.connectivity.report_success()
        if (len(remote_products) != len(self.local.get_products())
                or len(remote_bills) != len(self.local.get_bills())):
            logger.info("🔄 Changes detected, performing full sync...")
            return await self.perform_full_sync()
        return False

    # Full reconciliation

    async def force_sync(self) -> bool:
        """Run a full pass now, even while flagged offline; no-op while a pass is running"""
        return await self.perform_full_sync(force=True)

    async def perform_full_sync(self, force: bool = False) -> bool:
        """
        Reconcile products, then bills

        Args:
            force: Run even when connectivity is flagged offline

        Returns:
            bool: True if the pass completed
        """
        if self.sync_in_progress:
            logger.debug("Full sync skipped: another pass is in progress")
            return False
        if not force and not self.is_online:
            logger.debug("Full sync skipped: offline")
            return False

        # Set before the first await so a concurrent caller sees it
        self.sync_in_progress = True
        logger.info("🔄 Starting full sync...")

        try:
            remote_products = await self.remote.list_products()
            self.connectivity.report_success()
            product_plan = reconcile(self.local.get_products(), remote_products, product_key)
            uploaded_products = await self._upload_all(PRODUCTS, product_plan.to_upload, product_key)

            remote_bills = await self.remote.list_bills()
            bill_plan = reconcile(self.local.get_bills(), remote_bills, bill_key)
            uploaded_bills = await self._upload_all(BILLS, bill_plan.to_upload, bill_key)

            # No awaits from here on: the commit sees the latest local state
            self._commit_products(product_plan, uploaded_products)
            self._commit_bills(bill_plan, uploaded_bills)

            self.last_sync_time = time.time()
            self._notify(SyncEventType.SYNC_COMPLETE, timestamp=self.last_sync_time)
            logger.info("✅ Full sync completed")
            return True
        except RemoteStoreError as e:
            logger.error(f"❌ Full sync failed: {e}")
            self._record_remote_failure(e)
            self._notify(SyncEventType.SYNC_ERROR, error=str(e))
            return False
        except Exception as e:
            logger.error(f"❌ Full sync failed: {e}", exc_info=True)
            self._notify(SyncEventType.SYNC_ERROR, error=str(e) or type(e).__name__)
            return False
        finally:
            self.sync_in_progress = False

    async def _upload_all(self, collection: str, records: List, natural_key) -> int:
        uploaded = 0
        for record in records:
            try:
                await self._upload(collection, record, natural_key)
                uploaded += 1
            except RemoteStoreError as e:
                logger.warning(f"⚠️ Failed to upload {collection} record {record.id}: {e}")
                self._record_remote_failure(e)
        return uploaded

    async def _upload(self, collection: str, record, natural_key):
        """Create the record remotely unless a row with its natural key already exists"""
        key = natural_key(record)
        if key:
            existing = await self.remote.find_by_natural_key(collection, key)
            if existing is not None:
                logger.info(f"Remote {collection} record for {key} already exists, adopting it")
                return existing

        logger.info(f"⬆️ Uploading {collection} record {record.id}")
        if collection == PRODUCTS:
            return await self.remote.create_product(record)
        return await self.remote.create_bill(record)

    def _merge_downloads(self, current: List, downloads: List, natural_key) -> Tuple[List, int]:
        # Records created locally while the pass was awaiting are kept as they are
        fresh = reconcile(current, downloads, natural_key).to_download
        for record in fresh:
            logger.info(f"⬇️ Downloading record {record.id}")
        return merge(current, fresh), len(fresh)

    def _commit_products(self, plan: Reconciliation, uploaded: int):
        merged, downloaded = self._merge_downloads(self.local.get_products(), plan.to_download, product_key)
        changes = uploaded + downloaded
        if downloaded:
            self.local.save_products(merged)
        if changes:
            self._notify(SyncEventType.PRODUCTS_UPDATED, count=changes, products=merged)
            logger.info(f"✅ {changes} product changes synced")

    def _commit_bills(self, plan: Reconciliation, uploaded: int):
        merged, downloaded = self._merge_downloads(self.local.get_bills(), plan.to_download, bill_key)
        changes = uploaded + downloaded
        if downloaded:
            self.local.save_bills(merged)
        if changes:
            self._notify(SyncEventType.BILLS_UPDATED, count=changes, bills=merged)
            logger.info(f"✅ {changes} bill changes synced")

    # Reads

    def get_products(self) -> List[Product]:
        return self.local.get_products()

    def get_bills(self) -> List[Bill]:
        return self.local.get_bills()

    def get_product_by_barcode(self, barcode: str) -> Optional[Product]:
        """Catalog lookup for a scanned barcode"""
        return self.local.get_product_by_barcode(barcode.strip())

    # Local-first mutations

    async def create_product(self, data: Union[ProductCreate, dict]) -> Product:
        """
        Create a product locally and push it to the remote store

        A product without a barcode gets the next sequential barcode.

        Returns:
            Product: The locally stored product
        """
        if isinstance(data, dict):
            data = ProductCreate(**data)

        fields = data.model_dump()
        fields["barcode"] = (data.barcode or "").strip() or self.local.next_barcode()
        product = Product(id=generate_id(), **fields)

        products = self.local.get_products()
        products.insert(0, product)
        self.local.save_products(products)
        logger.info(f"➕ Product created locally: {product.name} ({product.barcode})")

        if self.is_online:
            try:
                await self._upload(PRODUCTS, product, product_key)
                self.connectivity.report_success()
                logger.info("✅ Product synced to cloud")
            except RemoteStoreError as e:
                logger.warning(f"⚠️ Failed to sync product to cloud: {e}")
                self._record_remote_failure(e)

        self._notify(SyncEventType.PRODUCT_CREATED, product=product)
        return product

    async def update_product(self, product_id: str, updates: Union[ProductUpdate, dict]) -> Product:
        """
        Apply field updates locally, then remotely

        Raises:
            ProductNotFoundError: If the product does not exist locally
        """
        if isinstance(updates, dict):
            updates = ProductUpdate(**updates)
        changes = updates.model_dump(exclude_unset=True, exclude_none=True)

        products = self.local.get_products()
        for index, product in enumerate(products):
            if product.id == product_id:
                break
        else:
            raise ProductNotFoundError(product_id)

        updated = product.model_copy(update={**changes, "updated_at": utc_now()})
        products[index] = updated
        self.local.save_products(products)
        logger.info(f"✏️ Product updated locally: {updated.name}")

        await self._push_product_update(product, changes)
        self._notify(SyncEventType.PRODUCT_UPDATED, product=updated)
        return updated

    async def record_sale(self, product_id: str, quantity: int = 1) -> Product:
        """
        Move sold units from stock to the sold counter

        Raises:
            ProductNotFoundError: If the product does not exist locally
            ValueError: If quantity is not positive
        """
        if quantity < 1:
            raise ValueError(f"Sale quantity must be positive, got {quantity}")

        before = self.local.get_product(product_id)
        updated = self.local.update_product_stock(product_id, quantity)
        if before is None or updated is None:
            raise ProductNotFoundError(product_id)

        changes = {"quantity": updated.quantity, "sold_quantity": updated.sold_quantity}
        await self._push_product_update(before, changes)
        self._notify(SyncEventType.PRODUCT_UPDATED, product=updated)
        return updated

    async def _push_product_update(self, original: Product, changes: dict):
        """Best-effort remote update, re-resolving the remote row by barcode if the id is unknown"""
        if not self.is_online or not changes:
            return
        try:
            try:
                await self.remote.update_product(original.id, changes)
            except RemoteNotFoundError:
                match = await self.remote.find_product_by_barcode(original.barcode)
                if match is None:
                    logger.info(f"Product {original.id} not on remote yet, next sync will upload it")
                    return
                await self.remote.update_product(match.id, changes)
            self.connectivity.report_success()
            logger.info("✅ Product update synced to cloud")
        except RemoteStoreError as e:
            logger.warning(f"⚠️ Failed to sync product update to cloud: {e}")
            self._record_remote_failure(e)

    async def delete_product(self, product_id: str):
        """
        Delete a product locally, then remotely

        Raises:
            ProductNotFoundError: If the product does not exist locally
        """
        products = self.local.get_products()
        remaining = [p for p in products if p.id != product_id]
        if len(remaining) == len(products):
            raise ProductNotFoundError(product_id)

        deleted = next(p for p in products if p.id == product_id)
        self.local.save_products(remaining)
        logger.info(f"🗑️ Product deleted locally: {deleted.name}")

        if self.is_online:
            try:
                try:
                    await self.remote.delete_product(product_id)
                except RemoteNotFoundError:
                    match = await self.remote.find_product_by_barcode(deleted.barcode)
                    if match is not None:
                        await self.remote.delete_product(match.id)
                self.connectivity.report_success()
                logger.info("✅ Product deletion synced to cloud")
            except RemoteStoreError as e:
                logger.warning(f"⚠️ Failed to sync product deletion to cloud: {e}")
                self._record_remote_failure(e)

        self._notify(SyncEventType.PRODUCT_DELETED, product_id=product_id)

    async def create_bill(self, data: Union[BillCreate, dict]) -> Bill:
        """
        Create a bill locally and push it to the remote store

        The bill's reference is its local id, so a retried upload finds the
        existing remote row instead of creating a second one.
        """
        if isinstance(data, dict):
            data = BillCreate(**data)

        bill_id = generate_id()
        bill = Bill(id=bill_id, reference=bill_id, **data.model_dump())

        bills = self.local.get_bills()
        bills.insert(0, bill)
        self.local.save_bills(bills)
        logger.info(f"🧾 Bill created locally: {bill.id} (total {bill.total})")

        if self.is_online:
            try:
                await self._upload(BILLS, bill, bill_key)
                self.connectivity.report_success()
                logger.info("✅ Bill synced to cloud")
            except RemoteStoreError as e:
                logger.warning(f"⚠️ Failed to sync bill to cloud: {e}")
                self._record_remote_failure(e)

        self._notify(SyncEventType.BILL_CREATED, bill=bill)
        return bill
