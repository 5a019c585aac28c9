import tempfile
from decimal import Decimal
from pathlib import Path
from unittest import TestCase

from solders.pubkey import Pubkey

from airdrop.errors import ParseError
from airdrop.recipients import parse_amount, read_recipients, recipients_from_addresses


class ReadRecipientsTest(TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.dir = Path(tmp.name)
        self.keys = [Pubkey.new_unique() for _ in range(3)]

    def write(self, text: str) -> Path:
        p = self.dir / "recipients.csv"
        p.write_text(text)
        return p

    def test_amount_column(self):
        p = self.write("pubkey,amount\n" + "".join(f"{k},{i + 1}.5\n" for i, k in enumerate(self.keys)))
        got = read_recipients(p)
        self.assertEqual([r.address for r in got], self.keys)
        self.assertEqual([r.amount for r in got], [Decimal("1.5"), Decimal("2.5"), Decimal("3.5")])

    def test_fixed_amount_without_column(self):
        p = self.write("address\n" + "".join(f"{k}\n" for k in self.keys))
        got = read_recipients(p, default_amount="7")
        self.assertEqual({r.amount for r in got}, {Decimal(7)})

    def test_empty_cells_fall_back_to_fixed_amount(self):
        p = self.write(f"wallet,amount\n{self.keys[0]},\n{self.keys[1]},2\n")
        got = read_recipients(p, default_amount="1")
        self.assertEqual([r.amount for r in got], [Decimal(1), Decimal(2)])

    def test_headerless_file_and_blank_lines(self):
        p = self.write(f"{self.keys[0]},4\n\n{self.keys[1]}\n")
        got = read_recipients(p, default_amount="9")
        self.assertEqual([(r.address, r.amount) for r in got], [(self.keys[0], Decimal(4)), (self.keys[1], Decimal(9))])

    def test_address_column_found_by_name(self):
        p = self.write(f"name,amount,recipient\nalice,3,{self.keys[0]}\n")
        (got,) = read_recipients(p)
        self.assertEqual((got.address, got.amount), (self.keys[0], Decimal(3)))

    def test_malformed_rows_name_the_line(self):
        p = self.write(f"pubkey,amount\n{self.keys[0]},1\nnot-a-key,2\n")
        with self.assertRaisesRegex(ParseError, r":3:"):
            read_recipients(p)
        p = self.write(f"pubkey,amount\n{self.keys[0]},lots\n")
        with self.assertRaisesRegex(ParseError, r":2:"):
            read_recipients(p)

    def test_missing_amount_everywhere(self):
        p = self.write(f"pubkey\n{self.keys[0]}\n")
        with self.assertRaises(ParseError):
            read_recipients(p)

    def test_empty_file(self):
        self.assertEqual(read_recipients(self.write(""), default_amount="1"), [])

    def test_missing_file(self):
        with self.assertRaises(ParseError):
            read_recipients(self.dir / "nope.csv")


class AmountTest(TestCase):
    def test_parse_amount(self):
        self.assertEqual(parse_amount("0.25"), Decimal("0.25"))
        for bad in ("", "-1", "0", "NaN", "inf", "1,5"):
            with self.assertRaises(ParseError, msg=bad):
                parse_amount(bad)

    def test_recipients_from_addresses(self):
        keys = [str(Pubkey.new_unique()) for _ in range(2)]
        got = recipients_from_addresses(keys, "3")
        self.assertEqual([str(r.address) for r in got], keys)
        self.assertTrue(all(r.amount == Decimal(3) for r in got))
        with self.assertRaises(ParseError):
            recipients_from_addresses(["xyz"], "3")
