"""
Tests for the command line interface.

Run with: python -m pytest tests/test_cli.py -v
"""

from unittest.mock import Mock, patch

import pytest
from click.testing import CliRunner


@pytest.fixture
def invoke(monkeypatch):
    from mediaindex.cli import cli
    monkeypatch.setenv('MEDIAINDEX_ENV', 'testing')

    def _invoke(*args):
        return CliRunner().invoke(cli, ['--env', 'testing', *args], obj={})
    return _invoke


class TestCLI:

    def test_check_mode_full(self, invoke):
        builder_cls = Mock()
        builder_cls.return_value.should_reindex.return_value = {
            'should_reindex': False, 'reason': 'Index file does not exist'
        }
        with patch('mediaindex.indexer.builder.IndexBuilder', builder_cls):
            result = invoke('check-mode')
        assert result.exit_code == 0
        assert 'full (Index file does not exist)' in result.output

    def test_status(self, invoke):
        builder_cls = Mock()
        builder_cls.return_value.get_index_status.return_value = {
            'index_exists': True, 'entries_count': 12, 'last_build_mode': 'incremental',
            'last_refresh': 1700000000000, 'index_last_modified': 1700000001000,
        }
        with patch('mediaindex.indexer.builder.IndexBuilder', builder_cls):
            result = invoke('status', '--org', 'acme', '--repo', 'website')
        assert result.exit_code == 0
        assert '/acme/website' in result.output
        assert 'Entries: 12' in result.output

    def test_build_success(self, invoke):
        runner = Mock()
        runner.start.return_value = True
        runner.last_result = {'success': True, 'entries': 5, 'duration': 0.4}
        with patch('mediaindex.indexer.runner.BuildRunner', return_value=runner):
            result = invoke('build', '--mode', 'full')
        assert result.exit_code == 0
        assert 'Entries: 5' in result.output
        assert runner.start.call_args[0][1] == 'full'

    def test_build_failure_exit_code(self, invoke):
        runner = Mock()
        runner.start.return_value = True
        runner.last_result = {'success': False, 'error': 'medialog API error: 500'}
        with patch('mediaindex.indexer.runner.BuildRunner', return_value=runner):
            result = invoke('build')
        assert result.exit_code == 1

    def test_invalid_site(self, invoke):
        result = invoke('status', '--org', 'bad name')
        assert result.exit_code != 0
        assert 'Invalid org/repo' in result.output
