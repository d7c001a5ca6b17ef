#!/usr/bin/env python3
"""
Unit tests for the fleetopsctl CLI (cli/main.py and cli/commands/*)
"""

import json

import pytest
from unittest.mock import patch, MagicMock

from cli.main import build_parser, main

pytestmark = pytest.mark.unit


@pytest.fixture
def cli_redis(fake_redis, monkeypatch):
    import cli.context
    monkeypatch.setattr(cli.context, 'connect_redis', lambda: fake_redis)
    return fake_redis


class TestParser:

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1
        assert 'fleetopsctl' in capsys.readouterr().out

    def test_subcommands_registered(self):
        parser = build_parser()
        args = parser.parse_args(['sites', 'set', '3', '--monitor-ids', '1,2'])
        assert args.command == 'sites'
        assert args.subcommand == 'set'
        assert args.monitor_ids == '1,2'


class TestSettingsCommand:

    def test_show_masks_secrets(self, cli_redis, capsys):
        assert main(['settings', 'show']) == 0

        out = capsys.readouterr().out
        token = cli_redis.get_json('fleetops:settings')['connector']['api_token']
        assert '[CONNECTOR]' in out
        assert token not in out

    def test_show_reveal(self, cli_redis, capsys):
        main(['settings', 'show', '--reveal'])
        token = cli_redis.get_json('fleetops:settings')['connector']['api_token']
        assert token in capsys.readouterr().out

    def test_regenerate_token(self, cli_redis, capsys):
        main(['settings', 'show'])
        old = cli_redis.get_json('fleetops:settings')['connector']['api_token']

        assert main(['settings', 'regenerate-token']) == 0

        new = cli_redis.get_json('fleetops:settings')['connector']['api_token']
        assert new != old
        assert new in capsys.readouterr().out

    def test_missing_subcommand(self, cli_redis):
        assert main(['settings']) == 1

    def test_redis_unavailable(self, monkeypatch, capsys):
        import cli.context

        def boom():
            raise ConnectionError("refused")

        monkeypatch.setattr(cli.context, 'connect_redis', boom)

        assert main(['settings', 'show']) == 1
        assert 'Could not connect to Redis' in capsys.readouterr().out


class TestSitesCommand:

    def test_set_list_show_delete(self, cli_redis, capsys):
        assert main(['sites', 'set', '12', '--report-url', 'https://r.example.com/12',
                     '--mode', 'badges', '--monitor-ids', '4, 7']) == 0
        assert main(['sites', 'list']) == 0
        out = capsys.readouterr().out
        assert 'https://r.example.com/12' in out
        assert 'Total: 1 sites' in out

        assert main(['sites', 'show', '12']) == 0
        overview = json.loads(capsys.readouterr().out)
        assert overview['meta']['monitoring']['monitor_ids'] == ['4', '7']

        assert main(['sites', 'delete', '12']) == 0
        assert main(['sites', 'delete', '12']) == 1

    def test_set_invalid_site_id(self, cli_redis):
        assert main(['sites', 'set', '0']) == 1
        assert cli_redis.get('fleetops:site_meta') is None

    def test_set_drops_unsafe_url(self, cli_redis):
        main(['sites', 'set', '3', '--report-url', 'javascript:alert(1)'])
        assert cli_redis.get_json('fleetops:site_meta')['3']['report_url'] == ''

    def test_register_directory_entry(self, cli_redis, capsys):
        assert main(['sites', 'register', '12', '--name', 'Acme', '--url', 'https://acme.example.com']) == 0
        main(['sites', 'set', '12'])
        main(['sites', 'list'])
        assert 'Acme' in capsys.readouterr().out


class TestSnapshotsCommand:

    def test_put_uptime_and_show(self, cli_redis, capsys):
        assert main(['snapshots', 'put-uptime', '5', '--status', 'up', '--uptime-24h', '99.9']) == 0
        capsys.readouterr()

        assert main(['snapshots', 'show', '5']) == 0
        data = json.loads(capsys.readouterr().out)
        assert data['uptime']['status'] == 'up'
        assert data['kpis'] is None

    def test_put_kpis_with_ttl(self, cli_redis):
        assert main(['snapshots', 'put-kpis', '5', '--clicks', '10', '--ctr', '0.05', '--ttl', '120']) == 0
        assert cli_redis.ttl('fleetops:kpis:5') == 120

    def test_invalid_site_id(self, cli_redis):
        assert main(['snapshots', 'put-kpis', 'abc', '--clicks', '1']) == 1


class TestRollupCommand:

    def test_rollup_json(self, cli_redis, capsys):
        main(['sites', 'set', '1'])
        main(['sites', 'set', '2'])
        main(['snapshots', 'put-kpis', '1', '--clicks', '10', '--ctr', '0.08', '--position', '3'])
        capsys.readouterr()

        assert main(['rollup', '--json']) == 0

        rollup = json.loads(capsys.readouterr().out)
        assert rollup['site_count'] == 2
        assert rollup['ctr'] == pytest.approx(0.04)
        assert rollup['position'] == pytest.approx(3.0)

    def test_rollup_table(self, cli_redis, capsys):
        main(['sites', 'set', '1'])
        main(['snapshots', 'put-kpis', '1', '--clicks', '12345', '--ctr', '3.1'])
        capsys.readouterr()

        main(['rollup'])

        out = capsys.readouterr().out
        assert '12,345' in out
        assert '3.10%' in out


class TestStatusCommand:

    def test_all_healthy(self, capsys):
        response = MagicMock(status_code=200)
        with patch('cli.commands.cmd_status.requests.get', return_value=response), \
                patch('cli.commands.cmd_status.socket.socket') as mock_socket:
            mock_socket.return_value.connect_ex.return_value = 0
            assert main(['status']) == 0
        assert 'All services healthy' in capsys.readouterr().out

    def test_api_down(self, capsys):
        response = MagicMock(status_code=503)
        with patch('cli.commands.cmd_status.requests.get', return_value=response), \
                patch('cli.commands.cmd_status.socket.socket') as mock_socket:
            mock_socket.return_value.connect_ex.return_value = 0
            assert main(['status']) == 1
        assert 'Unhealthy (HTTP 503)' in capsys.readouterr().out
