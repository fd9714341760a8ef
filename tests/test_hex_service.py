from __future__ import annotations

import unittest

from stowqr.services.hex_service import format_for_display, from_hex, payload_from_hex, to_hex
from stowqr.services.qr_codec_service import encode_payload, generate_entity_payload, generate_pregenerated_payload

UUID = '6f1c2a8e-3b4d-4c5e-9f60-718293a4b5c6'


class HexServiceTests(unittest.TestCase):
    def test_to_hex_uses_two_uppercase_digits_per_character(self) -> None:
        self.assertEqual(to_hex('PRE:'), '5052453A')
        self.assertEqual(to_hex('\n'), '0A')
        self.assertEqual(to_hex(''), '')

    def test_to_hex_rejects_multibyte_characters(self) -> None:
        with self.assertRaises(ValueError):
            to_hex('café€')

    def test_from_hex_inverts_to_hex_for_generated_payloads(self) -> None:
        payloads = [
            generate_entity_payload('location', 'Storage Room: Back', 'WAREHOUSE'),
            generate_entity_payload('item', 'Ünïcödé box'),
            generate_pregenerated_payload('OFFICE'),
            encode_payload('section', '100% cotton', UUID),
        ]
        for payload in payloads:
            self.assertEqual(from_hex(to_hex(payload)), payload)

    def test_from_hex_ignores_whitespace_and_case(self) -> None:
        self.assertEqual(from_hex(' 5052 453a\n'), 'PRE:')

    def test_from_hex_rejects_bad_input(self) -> None:
        for raw in ['ABC', 'ZZ', '0x41', '+1', '4G', 'AB CD E']:
            self.assertIsNone(from_hex(raw), raw)
        self.assertIsNone(from_hex(None))

    def test_format_for_display_groups_by_four(self) -> None:
        self.assertEqual(format_for_display('5052453A3132'), '5052 453A 3132')
        self.assertEqual(format_for_display('50524'), '5052 4')
        self.assertEqual(format_for_display(''), '')

    def test_display_format_strips_back_to_same_hex(self) -> None:
        payload = generate_pregenerated_payload('A')
        hex_value = to_hex(payload)
        shown = format_for_display(hex_value)
        self.assertFalse(shown.endswith(' '))
        self.assertEqual(shown.replace(' ', ''), hex_value)
        self.assertEqual(from_hex(shown), payload)

    def test_payload_from_hex_requires_valid_payload(self) -> None:
        payload = encode_payload('item', 'Drill', UUID)
        self.assertEqual(payload_from_hex(format_for_display(to_hex(payload))), payload)
        self.assertIsNone(payload_from_hex(to_hex('LOC:not-a-uuid:Name')))
        self.assertIsNone(payload_from_hex('XYZ'))
        self.assertIsNone(payload_from_hex(to_hex(f'ITE:{UUID}:caf\xe9')))


if __name__ == '__main__':
    unittest.main()
