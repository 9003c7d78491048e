import json
import tempfile
import unittest
from datetime import datetime, timedelta
from pathlib import Path

from freezegun import freeze_time
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from walletlink.db import Base
from walletlink.errors import LinkFailureReason, LinkingError
from walletlink.models import LinkChallenge
from walletlink.services.link_challenge_service import (
    consume_link_challenge,
    issue_link_challenge,
    purge_expired_challenges,
    resolve_link_challenge,
)


WALLET = '0x' + 'd4' * 20
OTHER_WALLET = '0x' + 'e5' * 20


class LinkChallengeServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_link_challenges.db'
        cls._engine = create_engine(f'sqlite:///{db_path}', connect_args={'check_same_thread': False})
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)

    @classmethod
    def tearDownClass(cls):
        cls._engine.dispose()
        cls._tmpdir.cleanup()

    def setUp(self):
        db = self._session_factory()
        try:
            db.query(LinkChallenge).delete()
            db.commit()
        finally:
            db.close()
        self.db = self._session_factory()

    def tearDown(self):
        self.db.close()

    def _assert_reason(self, ctx, detail):
        self.assertEqual(ctx.exception.reason, LinkFailureReason.SIGNATURE_INVALID)
        self.assertEqual(ctx.exception.detail, detail)

    @freeze_time('2026-10-17 09:00:00')
    def test_issue_builds_message_bound_to_pair(self):
        challenge = issue_link_challenge(self.db, wallet_address=WALLET.upper().replace('0X', '0x'), telegram_id=7001)

        body = json.loads(challenge.message)
        self.assertEqual(body['walletAddress'], WALLET)
        self.assertEqual(body['telegramId'], 7001)
        self.assertEqual(body['nonce'], challenge.nonce)
        self.assertEqual(len(challenge.nonce), 32)
        self.assertEqual(challenge.issued_at, datetime(2026, 10, 17, 9, 0, 0))
        self.assertEqual(challenge.expires_at - challenge.issued_at, timedelta(seconds=600))

    def test_each_challenge_gets_a_fresh_nonce(self):
        first = issue_link_challenge(self.db, wallet_address=WALLET, telegram_id=7001)
        second = issue_link_challenge(self.db, wallet_address=WALLET, telegram_id=7001)
        self.assertNotEqual(first.nonce, second.nonce)

    def test_resolve_returns_matching_challenge(self):
        challenge = issue_link_challenge(self.db, wallet_address=WALLET, telegram_id=7001)
        resolved = resolve_link_challenge(self.db, message=challenge.message, wallet_address=WALLET, telegram_id=7001)
        self.assertEqual(resolved.id, challenge.id)

    def test_resolve_rejects_unrecognized_message(self):
        with self.assertRaises(LinkingError) as ctx:
            resolve_link_challenge(self.db, message='please link me', wallet_address=WALLET, telegram_id=7001)
        self._assert_reason(ctx, 'unrecognized_link_message')

    def test_resolve_rejects_unknown_nonce(self):
        message = json.dumps({'action': 'telegram-connect', 'nonce': 'never-issued'})
        with self.assertRaises(LinkingError) as ctx:
            resolve_link_challenge(self.db, message=message, wallet_address=WALLET, telegram_id=7001)
        self._assert_reason(ctx, 'unknown_nonce')

    def test_resolve_rejects_altered_message(self):
        challenge = issue_link_challenge(self.db, wallet_address=WALLET, telegram_id=7001)
        body = json.loads(challenge.message)
        body['timestamp'] += 1
        with self.assertRaises(LinkingError) as ctx:
            resolve_link_challenge(self.db, message=json.dumps(body), wallet_address=WALLET, telegram_id=7001)
        self._assert_reason(ctx, 'message_mismatch')

    def test_resolve_rejects_other_pair(self):
        challenge = issue_link_challenge(self.db, wallet_address=WALLET, telegram_id=7001)
        with self.assertRaises(LinkingError) as ctx:
            resolve_link_challenge(self.db, message=challenge.message, wallet_address=OTHER_WALLET, telegram_id=7001)
        self._assert_reason(ctx, 'challenge_pair_mismatch')
        with self.assertRaises(LinkingError) as ctx:
            resolve_link_challenge(self.db, message=challenge.message, wallet_address=WALLET, telegram_id=7002)
        self._assert_reason(ctx, 'challenge_pair_mismatch')

    def test_resolve_rejects_expired_challenge(self):
        challenge = issue_link_challenge(self.db, wallet_address=WALLET, telegram_id=7001)
        later = challenge.expires_at + timedelta(seconds=1)
        with self.assertRaises(LinkingError) as ctx:
            resolve_link_challenge(
                self.db,
                message=challenge.message,
                wallet_address=WALLET,
                telegram_id=7001,
                now=later,
            )
        self._assert_reason(ctx, 'challenge_expired')

    def test_consume_succeeds_only_once(self):
        challenge = issue_link_challenge(self.db, wallet_address=WALLET, telegram_id=7001)

        consume_link_challenge(self.db, challenge)
        self.db.commit()

        with self.assertRaises(LinkingError) as ctx:
            consume_link_challenge(self.db, challenge)
        self._assert_reason(ctx, 'nonce_already_used')
        self.db.rollback()

        row = self.db.query(LinkChallenge).filter(LinkChallenge.id == challenge.id).one()
        self.assertIsNotNone(row.consumed_at)

    def test_consume_is_not_committed_by_itself(self):
        challenge = issue_link_challenge(self.db, wallet_address=WALLET, telegram_id=7001)
        consume_link_challenge(self.db, challenge)
        self.db.rollback()

        row = self.db.query(LinkChallenge).filter(LinkChallenge.id == challenge.id).one()
        self.assertIsNone(row.consumed_at)

    def test_purge_removes_only_expired_rows(self):
        with freeze_time('2026-10-17 08:00:00'):
            issue_link_challenge(self.db, wallet_address=WALLET, telegram_id=7001)
        with freeze_time('2026-10-17 09:00:00'):
            fresh = issue_link_challenge(self.db, wallet_address=WALLET, telegram_id=7001)

        removed = purge_expired_challenges(self.db, now=datetime(2026, 10, 17, 9, 1, 0))

        self.assertEqual(removed, 1)
        remaining = self.db.query(LinkChallenge).all()
        self.assertEqual([row.nonce for row in remaining], [fresh.nonce])


if __name__ == '__main__':
    unittest.main()
