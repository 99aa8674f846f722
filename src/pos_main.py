#!/usr/bin/env python3
"""
POS sync service
Wires the local cache, remote store, connectivity monitor, sync manager,
USB barcode scanner and optional local HTTP API together
"""

import sys
import asyncio
import argparse
import logging
from pathlib import Path

# Add current directory to path for imports
sys.path.append(str(Path(__file__).parent))

from api.remote_store import HttpRemoteStore
from database.local_storage import LocalStorage
from scanner.decoder import DecoderConfig, ScanDecoder
from scanner.key_sources import EvdevKeySource
from sync.cloud_sync import CloudSyncManager
from sync.connectivity import ConnectivityMonitor
from sync.events import SyncEvent, SyncEventType
from utils.config import load_config

logger = logging.getLogger(__name__)


class PosService:
    """Composition root: owns every component and their lifecycle"""

    def __init__(self, config, enable_scanner=True, enable_api=None):
        sync_cfg = config["sync"]
        scanner_cfg = config["scanner"]
        api_cfg = config["api"]

        self.config = config
        self.enable_scanner = enable_scanner
        self.enable_api = api_cfg.get("enabled", False) if enable_api is None else enable_api

        self.storage = LocalStorage(config["database"].get("path"))
        self.remote = HttpRemoteStore(
            sync_cfg["remote_url"],
            api_key=sync_cfg.get("api_key"),
            timeout=sync_cfg.get("request_timeout", 10.0),
        )
        self.connectivity = ConnectivityMonitor(
            probe_url=sync_cfg.get("probe_url"),
            probe_interval=sync_cfg.get("probe_interval", 15.0),
        )
        self.sync = CloudSyncManager(
            self.storage,
            self.remote,
            self.connectivity,
            sync_interval=sync_cfg.get("sync_interval", 10.0),
        )
        self.sync.on_sync(self._log_sync_event)

        self.decoder_config = DecoderConfig.from_dict(scanner_cfg)
        self.decoder = ScanDecoder(self.handle_scan, self.handle_scan_error, self.decoder_config)
        self.key_source = EvdevKeySource(
            device_paths=scanner_cfg.get("device_paths") or None,
            grab=scanner_cfg.get("grab_devices", False),
        )
        self.last_product = None

    def handle_scan(self, barcode):
        """Look up a scanned barcode in the local catalog"""
        product = self.sync.get_product_by_barcode(barcode)
        self.last_product = product
        if product is None:
            logger.warning(f"⚠️ Unknown barcode: {barcode}")
        else:
            logger.info(f"✅ {product.name} ({barcode}) price {product.price} in stock {product.quantity}")

    def handle_scan_error(self, message):
        logger.warning(f"⚠️ Scan error: {message}")

    @staticmethod
    def _log_sync_event(event: SyncEvent):
        if event.type == SyncEventType.SYNC_ERROR:
            logger.error(f"❌ Sync error: {event.error}")
        elif event.type == SyncEventType.CONNECTIVITY_CHANGED:
            logger.info(f"Connectivity: {'online' if event.online else 'offline'}")
        else:
            logger.debug(f"Sync event: {event.type.value}")

    async def start(self):
        self.storage.test_connection()
        self.connectivity.start()
        await self.sync.initialize()

        if self.enable_scanner:
            if self.decoder.attach(self.key_source):
                logger.info("✅ USB barcode scanner ready")
            else:
                logger.warning("⚠️ Running without a USB barcode scanner")

    async def stop(self):
        self.decoder.detach()
        self.key_source.stop()
        self.sync.destroy()
        await self.connectivity.stop()
        await self.remote.close()
        self.storage.close()
        logger.info("✅ Shutdown completed")

    async def run(self):
        await self.start()
        try:
            if self.enable_api:
                await self._serve_api()
            else:
                await asyncio.Event().wait()
        finally:
            await self.stop()

    async def _serve_api(self):
        import uvicorn
        from api.pos_api import create_app

        api_cfg = self.config["api"]
        app = create_app(self.sync, self.decoder_config.min_length, self.decoder_config.max_length)
        server = uvicorn.Server(uvicorn.Config(
            app, host=api_cfg.get("host", "127.0.0.1"), port=int(api_cfg.get("port", 8000)), log_level="info"
        ))
        logger.info(f"🚀 Local API on http://{api_cfg.get('host')}:{api_cfg.get('port')}")
        await server.serve()

    async def sync_once(self):
        """Run a single full sync and report the outcome"""
        try:
            return await self.sync.force_sync()
        finally:
            await self.remote.close()
            self.storage.close()


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Offline-first POS sync service with USB barcode scanning")
    parser.add_argument("--config", help="Path to config.json")
    parser.add_argument("--remote-url", help="Remote store base URL (overrides config)")
    parser.add_argument("--db", help="SQLite database path (overrides config)")
    parser.add_argument("--api", action="store_true", help="Serve the local HTTP API")
    parser.add_argument("--no-scanner", action="store_true", help="Do not read USB barcode scanners")
    parser.add_argument("--sync-once", action="store_true", help="Run one full sync and exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def main(argv=None):
    """Entry point for the pos-sync command"""
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler()]
    )

    config = load_config(args.config)
    if args.remote_url:
        config["sync"]["remote_url"] = args.remote_url
    if args.db:
        config["database"]["path"] = args.db

    if not config["sync"].get("remote_url"):
        logger.error("❌ No remote store URL found in config file, environment (POS_REMOTE_URL) or --remote-url")
        return 1

    try:
        service = PosService(config, enable_scanner=not args.no_scanner, enable_api=args.api or None)
        if args.sync_once:
            completed = asyncio.run(service.sync_once())
            return 0 if completed else 1
        asyncio.run(service.run())
        return 0
    except KeyboardInterrupt:
        logger.info("Application interrupted by user")
        return 0
    except Exception as e:
        logger.error(f"❌ Application error: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
