import os
import sys
import unittest

# Add src to path
sys.path.append(os.path.join(os.path.dirname(__file__), '..', 'src'))

from database.models import Bill, Product
from sync.reconcile import bill_key, merge, product_key, reconcile


def product(product_id, barcode):
    return Product(id=product_id, barcode=barcode, name=f"Item {product_id}")


class TestReconcile(unittest.TestCase):

    def test_match_by_id(self):
        plan = reconcile([product("1", "111")], [product("1", "999")], product_key)
        self.assertTrue(plan.in_sync)
        self.assertEqual(plan.matched, 1)

    def test_match_by_natural_key(self):
        plan = reconcile([product("local-1", "X")], [product("remote-7", "X")], product_key)
        self.assertEqual(plan.to_upload, [])
        self.assertEqual(plan.to_download, [])

    def test_symmetric_difference(self):
        local = [product("1", "111"), product("2", "222")]
        remote = [product("2", "222"), product("3", "333")]
        plan = reconcile(local, remote, product_key)
        self.assertEqual([p.id for p in plan.to_upload], ["1"])
        self.assertEqual([p.id for p in plan.to_download], ["3"])
        self.assertEqual(plan.matched, 1)

    def test_remote_duplicates_downloaded_once(self):
        remote = [product("r1", "555"), product("r2", "555")]
        plan = reconcile([], remote, product_key)
        self.assertEqual([p.id for p in plan.to_download], ["r1"])

    def test_bills_match_by_reference(self):
        local = [Bill(id="local-b", reference="ref-1")]
        remote = [Bill(id="cloud-9", reference="ref-1"), Bill(id="cloud-10", reference="ref-2")]
        plan = reconcile(local, remote, bill_key)
        self.assertEqual(plan.to_upload, [])
        self.assertEqual([b.id for b in plan.to_download], ["cloud-10"])

    def test_empty_natural_key_never_matches(self):
        local = [Bill(id="a", reference="")]
        remote = [Bill(id="b", reference="")]
        plan = reconcile(local, remote, bill_key)
        self.assertEqual(len(plan.to_upload), 1)
        self.assertEqual(len(plan.to_download), 1)

    def test_merge_keeps_local_first(self):
        merged = merge([product("1", "1")], [product("2", "2")])
        self.assertEqual([p.id for p in merged], ["1", "2"])


if __name__ == '__main__':
    unittest.main()
