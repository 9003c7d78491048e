import hashlib
import hmac
import unittest
from datetime import datetime, timezone
from unittest.mock import patch

from freezegun import freeze_time

from walletlink.config import settings
from walletlink.errors import TelegramAuthConfigError
from walletlink.services.telegram_auth import data_check_string, is_fresh, parse_telegram_user, verify_telegram_auth


BOT_TOKEN = '123456:test-bot-token'
FROZEN_NOW = datetime(2026, 10, 17, 12, 0, 0, tzinfo=timezone.utc)


def _signed(fields: dict, token: str = BOT_TOKEN) -> dict:
    check = '\n'.join(f'{key}={value}' for key, value in sorted(fields.items()))
    secret = hashlib.sha256(token.encode('utf-8')).digest()
    digest = hmac.new(secret, check.encode('utf-8'), hashlib.sha256).hexdigest()
    return {**fields, 'hash': digest}


class TelegramAuthTests(unittest.TestCase):
    def setUp(self):
        self.payload = _signed(
            {
                'id': 987654321,
                'first_name': 'Ada',
                'username': 'ada_l',
                'auth_date': int(FROZEN_NOW.timestamp()) - 30,
            }
        )

    def test_data_check_string_sorted_and_excludes_hash(self):
        result = data_check_string({'username': 'u', 'hash': 'h', 'auth_date': 1, 'id': 7, 'last_name': None})
        self.assertEqual(result, 'auth_date=1\nid=7\nusername=u')

    def test_valid_payload_verifies(self):
        self.assertTrue(verify_telegram_auth(self.payload, BOT_TOKEN))

    def test_tampered_field_fails(self):
        tampered = dict(self.payload, id=111)
        self.assertFalse(verify_telegram_auth(tampered, BOT_TOKEN))

    def test_other_bot_token_fails(self):
        self.assertFalse(verify_telegram_auth(self.payload, '999:other'))

    def test_missing_hash_fails(self):
        payload = dict(self.payload)
        payload.pop('hash')
        self.assertFalse(verify_telegram_auth(payload, BOT_TOKEN))

    def test_missing_bot_token_is_fatal(self):
        with patch.object(settings, 'telegram_bot_token', ''):
            with self.assertRaises(TelegramAuthConfigError):
                verify_telegram_auth(self.payload)

    def test_configured_bot_token_is_used_by_default(self):
        with patch.object(settings, 'telegram_bot_token', BOT_TOKEN):
            self.assertTrue(verify_telegram_auth(self.payload))

    @freeze_time(FROZEN_NOW)
    def test_fresh_payload_within_window(self):
        self.assertTrue(is_fresh(self.payload, 3_600_000))

    @freeze_time(FROZEN_NOW)
    def test_stale_payload_rejected_even_with_valid_hash(self):
        stale = _signed({'id': 987654321, 'auth_date': int(FROZEN_NOW.timestamp()) - 3601})
        self.assertTrue(verify_telegram_auth(stale, BOT_TOKEN))
        self.assertFalse(is_fresh(stale, 3_600_000))

    def test_window_edge_is_inclusive(self):
        payload = {'auth_date': int(FROZEN_NOW.timestamp()) - 3600}
        self.assertTrue(is_fresh(payload, 3_600_000, now=FROZEN_NOW))

    def test_future_auth_date_beyond_skew_rejected(self):
        payload = {'auth_date': int(FROZEN_NOW.timestamp()) + 600}
        self.assertFalse(is_fresh(payload, 3_600_000, now=FROZEN_NOW))

    def test_missing_or_invalid_auth_date_not_fresh(self):
        self.assertFalse(is_fresh({}, 3_600_000, now=FROZEN_NOW))
        self.assertFalse(is_fresh({'auth_date': 'yesterday'}, 3_600_000, now=FROZEN_NOW))

    def test_parse_telegram_user_keeps_extra_fields(self):
        user = parse_telegram_user(dict(self.payload, language_code='en'))
        self.assertEqual(user.id, 987654321)
        self.assertEqual(user.display_name, 'Ada')
        self.assertIn('language_code', user.signed_fields())

    def test_parse_telegram_user_requires_id(self):
        payload = dict(self.payload)
        payload.pop('id')
        with self.assertRaises(ValueError):
            parse_telegram_user(payload)

    def test_naive_now_is_rejected(self):
        with self.assertRaises(ValueError):
            is_fresh(self.payload, 3_600_000, now=datetime(2026, 10, 17, 12, 0, 0))


if __name__ == '__main__':
    unittest.main()
