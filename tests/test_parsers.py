#!/usr/bin/env python3
"""
Tests for the HD order-line and Pinnacle stock parsers.

DataFrames are built in memory so no Excel fixtures are needed.
"""

import os
import sys
import unittest

import pandas as pd

# Add the parent directory to the path to access utils
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from utils.hd_excel_parser import (
    detect_column_mappings,
    parse_dataframe,
    parse_numeric_value,
)
from utils.pinnacle_parser import parse_stock_dataframe


class TestHDColumnMappings(unittest.TestCase):

    def test_exact_variations_case_insensitive(self):
        mapping = detect_column_mappings(
            ["Sales Order", "*Line", "Part #", "Description", "Order Qty", "Status"]
        )

        self.assertEqual(mapping["hd_order_number"], "Sales Order")
        self.assertEqual(mapping["line_number"], "*Line")
        self.assertEqual(mapping["part_number"], "Part #")
        self.assertEqual(mapping["order_quantity"], "Order Qty")

    def test_fuzzy_fallback(self):
        mapping = detect_column_mappings(
            ["HD Order Number", "Line Number", "Dealer P.O. / PO Ref", "B/O Estimated Date"]
        )

        self.assertEqual(mapping["dealer_po_number"], "Dealer P.O. / PO Ref")
        self.assertEqual(mapping["backorder_clear_by"], "B/O Estimated Date")


class TestHDOrderLineParser(unittest.TestCase):

    def make_frame(self):
        return pd.DataFrame(
            {
                "HD Order Number": [7001.0, 7001.0, None],
                "Line Number": [1.0, 2.0, None],
                "Part Number": ["94800-10", "67700-21", None],
                "Description": ["Mirror", "Seat", None],
                "Order Quantity": [2, 1, None],
                "Unit Price": ["$12.50", "1,200.00", None],
                "Dealer PO Number": ["PO55", "PO55", None],
                "Order Date": [pd.Timestamp("2024-03-01"), pd.Timestamp("2024-03-02"), None],
            }
        )

    def test_rows_mapped_to_lines(self):
        lines = parse_dataframe(self.make_frame())

        self.assertEqual(len(lines), 2)
        first = lines[0]
        self.assertEqual(first.hd_order_number, "7001")
        self.assertEqual(first.line_number, "1")
        self.assertEqual(first.part_number, "94800-10")
        self.assertEqual(first.order_quantity, 2)
        self.assertEqual(first.unit_price, 12.5)
        self.assertEqual(first.dealer_po_number, "PO55")
        self.assertEqual(first.order_date, "2024-03-01")
        self.assertEqual(lines[1].unit_price, 1200.0)

    def test_missing_columns_default(self):
        lines = parse_dataframe(self.make_frame())

        self.assertEqual(lines[0].open_quantity, 0)
        self.assertIsNone(lines[0].invoice_number)
        self.assertIsNone(lines[0].backorder_clear_by)

    def test_empty_frame_rejected(self):
        with self.assertRaises(ValueError):
            parse_dataframe(pd.DataFrame())

    def test_missing_line_column_rejected(self):
        df = pd.DataFrame({"HD Order Number": ["7001"], "Part Number": ["94800-10"]})
        with self.assertRaises(ValueError):
            parse_dataframe(df)

    def test_parse_numeric_value(self):
        self.assertEqual(parse_numeric_value("$1,234.50"), 1234.5)
        self.assertEqual(parse_numeric_value(None), 0.0)
        self.assertEqual(parse_numeric_value(float("nan")), 0.0)
        self.assertEqual(parse_numeric_value("n/a"), 0.0)
        self.assertEqual(parse_numeric_value(3), 3.0)


class TestPinnacleParser(unittest.TestCase):

    def test_valuation_report_rows(self):
        df = pd.DataFrame(
            {
                "Part No": ["A1", None, "C3"],
                "Description": ["Mirror", "blank", "Oil Filter"],
                "Stock": [2.6, 1, "12"],
                "Bin Location 1": ["A-01", None, "C-14"],
                "Cost": ["1,234.50", None, "6.2"],
                "Prod Group": ["ACC", None, None],
            }
        )

        records = parse_stock_dataframe(df)

        self.assertEqual([r.part_number for r in records], ["A1", "C3"])
        self.assertEqual(records[0].stock_quantity, 3)
        self.assertEqual(records[0].bin_location, "A-01")
        self.assertEqual(records[0].cost, 1234.5)
        self.assertEqual(records[0].product_group, "ACC")
        self.assertEqual(records[1].stock_quantity, 12)
        self.assertIsNone(records[1].average_cost)

    def test_stock_holding_column_preferred(self):
        df = pd.DataFrame(
            {
                "Part No": ["A1"],
                "Description": ["Mirror"],
                "Stock Holding": [5],
                "Bin Locations": ["A-01"],
            }
        )

        [record] = parse_stock_dataframe(df)
        self.assertEqual(record.stock_quantity, 5)
        self.assertEqual(record.bin_location, "A-01")

    def test_missing_required_columns(self):
        with self.assertRaises(ValueError):
            parse_stock_dataframe(pd.DataFrame({"Part No": ["A1"], "Description": ["x"]}))


if __name__ == '__main__':
    unittest.main(verbosity=2)
