"""
Unit tests for the command-line interface
"""
import pytest
from datetime import timedelta
from unittest.mock import MagicMock

from marketplace_hub.cli import MarketplaceHubCLI, create_parser, main
from marketplace_hub.services import RefreshBatchResult
from marketplace_hub.utils.exceptions import NotFoundError


@pytest.fixture
def mock_services():
    services = MagicMock()
    services.cache.health.return_value = {"memory_cache": True, "redis": False, "healthy": True}
    services.cache.stats.return_value = {"memory_items": 0}
    return services


@pytest.fixture
def cli(mock_services):
    return MarketplaceHubCLI(services=mock_services)


class TestParser:
    """Test argument parsing"""

    def test_cleanup_days(self):
        args = create_parser().parse_args(["cleanup", "--days", "7"])
        assert args.command == "cleanup"
        assert args.days == 7

    def test_mark_expired_requires_company(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["mark-expired"])


class TestCommands:
    """Test command handlers"""

    def test_no_command_prints_help(self, cli):
        assert main([], cli=cli) == 1

    def test_refresh_tokens_reports_failures(self, cli, mock_services, capsys):
        mock_services.scheduler.run_token_refresh_now.return_value = RefreshBatchResult(
            total=2, succeeded=1, failed=1, failures={"c-2": "boom"}
        )

        assert main(["refresh-tokens"], cli=cli) == 1
        assert "c-2: boom" in capsys.readouterr().out

    def test_refresh_single_company(self, cli, mock_services):
        info = MagicMock(company_id="c-1")
        mock_services.token_manager.refresh_tenant.return_value = info

        assert main(["refresh-tokens", "--company", "c-1"], cli=cli) == 0
        mock_services.token_manager.refresh_tenant.assert_called_once_with("c-1")

    def test_cleanup_passes_retention(self, cli, mock_services):
        mock_services.scheduler.run_cleanup_now.return_value = 3

        assert main(["cleanup", "--days", "10"], cli=cli) == 0
        mock_services.scheduler.run_cleanup_now.assert_called_once_with(10)

    def test_handled_error_exits_with_one(self, cli, mock_services, capsys):
        mock_services.token_manager.mark_expired.side_effect = NotFoundError("Company", "nope")

        assert main(["mark-expired", "nope"], cli=cli) == 1
        assert "Company not found: nope" in capsys.readouterr().out

    def test_token_status_json(self, cli, mock_services, capsys):
        status = MagicMock()
        status.to_dict.return_value = {"company_id": "c-1"}
        mock_services.token_manager.all_statuses.return_value = [status]

        assert main(["token-status", "--json"], cli=cli) == 0
        assert '"company_id": "c-1"' in capsys.readouterr().out

    def test_token_status_table(self, cli, mock_services, capsys):
        status = MagicMock(
            company_id="c-1", company_name="Acme", is_expired=False, needs_refresh=True,
            time_to_expiry=timedelta(hours=3), status="active", refresh_count=2,
        )
        mock_services.token_manager.expiry_info.return_value = status

        assert main(["token-status", "--company", "c-1"], cli=cli) == 0
        assert "3.0h left" in capsys.readouterr().out

    def test_cache_health(self, cli):
        assert main(["cache-health"], cli=cli) == 0

    def test_health_unhealthy(self, cli, mock_services):
        mock_services.health.return_value = {"healthy": False}
        assert main(["health"], cli=cli) == 1
