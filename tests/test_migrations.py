import importlib.util
import tempfile
import unittest
from pathlib import Path

from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import create_engine, inspect

from walletlink.models import LinkChallenge, WalletTelegramBinding


MIGRATION_PATH = (
    Path(__file__).resolve().parents[1] / 'alembic' / 'versions' / '20261017_0001_wallet_telegram_bindings.py'
)


def _load_migration():
    module_spec = importlib.util.spec_from_file_location('wallet_telegram_bindings_migration', MIGRATION_PATH)
    module = importlib.util.module_from_spec(module_spec)
    module_spec.loader.exec_module(module)
    return module


class MigrationTests(unittest.TestCase):
    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(self._tmpdir.name) / 'test_migrations.db'
        self.engine = create_engine(f'sqlite:///{db_path}')
        self.migration = _load_migration()

    def tearDown(self):
        self.engine.dispose()
        self._tmpdir.cleanup()

    def _run(self, step):
        with self.engine.begin() as conn:
            ctx = MigrationContext.configure(conn)
            with Operations.context(ctx):
                step()

    def test_upgrade_matches_models(self):
        self._run(self.migration.upgrade)
        inspector = inspect(self.engine)

        for model in (WalletTelegramBinding, LinkChallenge):
            table = model.__table__
            columns = {column['name'] for column in inspector.get_columns(table.name)}
            self.assertEqual(columns, {column.name for column in table.columns})

        unique = {
            constraint['name']: constraint['column_names']
            for constraint in inspector.get_unique_constraints('wallet_telegram_bindings')
        }
        self.assertEqual(unique['uq_wallet_telegram_bindings_wallet'], ['wallet_address'])
        self.assertEqual(unique['uq_wallet_telegram_bindings_telegram'], ['telegram_user_id'])
        self.assertEqual(unique['uq_wallet_telegram_bindings_pair'], ['wallet_address', 'telegram_user_id'])

        indexes = {index['name'] for index in inspector.get_indexes('link_challenges')}
        self.assertIn('ix_link_challenges_expires_at', indexes)
        self.assertIn('ix_link_challenges_wallet_telegram', indexes)

    def test_downgrade_drops_tables(self):
        self._run(self.migration.upgrade)
        self._run(self.migration.downgrade)

        tables = set(inspect(self.engine).get_table_names())
        self.assertNotIn('wallet_telegram_bindings', tables)
        self.assertNotIn('link_challenges', tables)


if __name__ == '__main__':
    unittest.main()
