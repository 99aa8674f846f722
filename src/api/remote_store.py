"""
Remote collection store used by the cloud sync manager.

HttpRemoteStore talks JSON over HTTP:

    GET/POST          /products
    GET/PUT/DELETE    /products/{id}
    GET               /products/barcode/{barcode}
    GET/POST          /bills
    GET               /bills/reference/{reference}
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import aiohttp
from pydantic import ValidationError

from database.models import Bill, Product, ProductUpdate

logger = logging.getLogger(__name__)

PRODUCTS = "products"
BILLS = "bills"


class RemoteStoreError(Exception):
    """A remote call failed (network, auth, server or schema error)"""

    def __init__(self, message, status=None):
        super().__init__(message)
        self.status = status


class RemoteNotFoundError(RemoteStoreError):
    """The targeted record does not exist in the remote store"""
    pass


class RemoteStore(ABC):
    """Interface of the remote side of a sync; every method is a coroutine"""

    @abstractmethod
    async def list_products(self) -> List[Product]:
        ...

    @abstractmethod
    async def create_product(self, product: Product) -> Product:
        ...

    @abstractmethod
    async def update_product(self, product_id: str, changes: Dict[str, Any]) -> Product:
        ...

    @abstractmethod
    async def delete_product(self, product_id: str):
        ...

    @abstractmethod
    async def find_product_by_barcode(self, barcode: str) -> Optional[Product]:
        ...

    @abstractmethod
    async def list_bills(self) -> List[Bill]:
        ...

    @abstractmethod
    async def create_bill(self, bill: Bill) -> Bill:
        ...

    @abstractmethod
    async def find_bill_by_reference(self, reference: str) -> Optional[Bill]:
        ...

    async def find_by_natural_key(self, collection: str, key: str):
        """Look up a record by barcode (products) or reference (bills)"""
        if collection == PRODUCTS:
            return await self.find_product_by_barcode(key)
        if collection == BILLS:
            return await self.find_bill_by_reference(key)
        raise ValueError(f"Unknown collection: {collection}")

    async def close(self):
        pass


class HttpRemoteStore(RemoteStore):
    """aiohttp client for a REST remote store"""

    def __init__(self, base_url: str, api_key: Optional[str] = None, timeout: float = 10.0,
                 session: Optional[aiohttp.ClientSession] = None):
        """
        Args:
            base_url: Root URL of the remote store API
            api_key: Sent as a bearer token when set
            timeout: Total seconds allowed per request
            session: Externally owned session (not closed by close())
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout, headers=self._headers())
            self._owns_session = True
        return self._session

    async def _request(self, method: str, path: str, payload=None):
        url = f"{self.base_url}{path}"
        try:
            async with self._get_session().request(method, url, json=payload) as response:
                if response.status == 404:
                    raise RemoteNotFoundError(f"{method} {path}: not found", status=404)
                if response.status >= 400:
                    body = await response.text()
                    raise RemoteStoreError(
                        f"{method} {path} failed: HTTP {response.status}: {body[:200]}",
                        status=response.status,
                    )
                if response.status == 204:
                    return None
                return await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"Remote request failed: {method} {url}: {e!r}")
            raise RemoteStoreError(f"{method} {path} failed: {str(e) or type(e).__name__}") from e
        except ValueError as e:
            raise RemoteStoreError(f"{method} {path} returned invalid JSON: {e}") from e

    @staticmethod
    def _parse(model, data):
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise RemoteStoreError(f"Unexpected {model.__name__} payload: {e}") from e

    def _parse_list(self, model, data) -> List:
        if not isinstance(data, list):
            raise RemoteStoreError(f"Expected a list of {model.__name__}, got {type(data).__name__}")
        return [self._parse(model, item) for item in data]

    async def _find(self, model, path: str):
        try:
            data = await self._request("GET", path)
        except RemoteNotFoundError:
            return None
        return self._parse(model, data) if data else None

    # Products

    async def list_products(self) -> List[Product]:
        return self._parse_list(Product, await self._request("GET", "/products"))

    async def create_product(self, product: Product) -> Product:
        data = await self._request("POST", "/products", product.model_dump(mode="json"))
        return self._parse(Product, data)

    async def update_product(self, product_id: str, changes: Dict[str, Any]) -> Product:
        payload = ProductUpdate(**changes).model_dump(mode="json", exclude_unset=True)
        data = await self._request("PUT", f"/products/{quote(product_id, safe='')}", payload)
        return self._parse(Product, data)

    async def delete_product(self, product_id: str):
        await self._request("DELETE", f"/products/{quote(product_id, safe='')}")

    async def find_product_by_barcode(self, barcode: str) -> Optional[Product]:
        return await self._find(Product, f"/products/barcode/{quote(barcode, safe='')}")

    # Bills

    async def list_bills(self) -> List[Bill]:
        return self._parse_list(Bill, await self._request("GET", "/bills"))

    async def create_bill(self, bill: Bill) -> Bill:
        data = await self._request("POST", "/bills", bill.model_dump(mode="json"))
        return self._parse(Bill, data)

    async def find_bill_by_reference(self, reference: str) -> Optional[Bill]:
        return await self._find(Bill, f"/bills/reference/{quote(reference, safe='')}")

    async def close(self):
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None
