"""
Tests for the invex command line
"""

import json

import pytest
import yaml
from click.testing import CliRunner

from invex.cli import cli
from invex.config.invex_config import InvexConfig


INVOICE_TEXT = """Vendor: ABC Traders
Invoice Number: INV-77
Invoice Date: 2024-01-15
Total: 1,250.00
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text(yaml.safe_dump({
        'database': {'type': 'sqlite', 'path': str(tmp_path / 'invex.db')},
        'storage': {'path': str(tmp_path / 'storage')},
    }))
    yield str(path)
    InvexConfig.reset()


def run(config_file, *args):
    return CliRunner().invoke(cli, ['--config', config_file, '--log-level', 'ERROR', *args])


class TestCli:

    def test_parse_text_file(self, tmp_path, config_file):
        """Parsing prints the located fields as JSON"""
        invoice = tmp_path / 'bill.txt'
        invoice.write_text(INVOICE_TEXT)

        result = run(config_file, 'parse', str(invoice))

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data['invoice_number'] == 'INV-77'
        assert data['invoice_date'] == '2024-01-15'
        assert data['total_amount'] == '1250.00'
        assert 'raw_text' not in data

    def test_parse_incomplete_file_fails(self, tmp_path, config_file):
        """Incomplete invoices exit non-zero"""
        invoice = tmp_path / 'note.txt'
        invoice.write_text("Hello there\n")

        result = run(config_file, 'parse', '--raw', str(invoice))

        assert result.exit_code == 1
        assert json.loads(result.output)['raw_text'] == "Hello there\n"

    def test_init_company_and_sync_gate(self, config_file):
        """A new company may sync right away"""
        init = run(config_file, 'init')
        assert init.exit_code == 0, init.output
        assert 'Database initialized (sqlite)' in init.output

        added = run(config_file, 'add-company', 'Acme', '--owner', 'u-1')
        assert added.exit_code == 0, added.output
        company_id = added.output.strip()

        check = run(config_file, 'can-sync', company_id)
        assert check.exit_code == 0, check.output
        assert check.output.strip() == 'yes (never synced)'

    def test_sync_without_token(self, config_file):
        """Sync refuses companies without a ledger token"""
        run(config_file, 'init')
        company_id = run(config_file, 'add-company', 'Acme', '--owner', 'u-1').output.strip()

        result = run(config_file, 'sync-accounts', company_id, '--user-id', 'u-1')

        assert result.exit_code == 1
        assert 'Ledger access token not configured' in result.output
