from unittest.mock import MagicMock, patch

import pytest
from redis.exceptions import ConnectionError

from interview_redis import cli
from interview_redis.core.config import SingleflightScope


def test_next_id_with_memory_store(capsys):
    assert cli.main(["next-id", "--memory", "--count", "3", "--type", "order"]) == 0
    lines = capsys.readouterr().out.strip().splitlines()
    assert len(lines) == 3
    assert [line.rsplit("counter=", 1)[1] for line in lines] == ["1", "2", "3"]


def test_id_race_reports_no_duplicates(capsys):
    assert cli.main(["id-race", "--memory", "--total", "2000", "--workers", "8"]) == 0
    assert "expected=2000, unique=2000, duplicates=0" in capsys.readouterr().out


def test_stampede_loads_once(capsys):
    assert cli.main(["stampede", "--memory", "--callers", "10", "--db-ms", "50", "--scope", "process"]) == 0
    out = capsys.readouterr().out
    assert "loads=1 " in out
    assert "distinct_values=1" in out


def test_stampede_distributed_against_redis(fake_redis, capsys):
    with patch.object(cli, "get_redis_client", return_value=fake_redis):
        assert cli.main(["stampede", "--callers", "6", "--db-ms", "50", "--scope", "distributed"]) == 0
    assert "scope=distributed" in capsys.readouterr().out


def test_distributed_scope_requires_redis():
    with pytest.raises(SystemExit) as exc_info:
        cli.parse_args(["stampede", "--memory", "--scope", "distributed"])
    assert exc_info.value.code == 2


def test_store_unavailable_exit_code(capsys):
    client = MagicMock()
    client.incr.side_effect = ConnectionError("connection refused")
    with patch.object(cli, "get_redis_client", return_value=client):
        assert cli.main(["next-id", "--count", "1"]) == 1
    assert "store unavailable" in capsys.readouterr().out
    client.close.assert_called_once()


def test_stampede_builds_lookup_from_settings(fake_redis, capsys):
    from_settings = cli.StampedeSafeLookup.from_settings
    with patch.object(cli, "get_redis_client", return_value=fake_redis), \
            patch.object(cli.StampedeSafeLookup, "from_settings", wraps=from_settings) as built:
        assert cli.main(["stampede", "--callers", "4", "--db-ms", "20",
                         "--scope", "distributed", "--cache-ttl", "30"]) == 0
    config = built.call_args.kwargs["config"]
    assert config.SINGLEFLIGHT_SCOPE is SingleflightScope.DISTRIBUTED
    assert config.CACHE_TTL == 30
    assert built.call_args.kwargs["client"] is fake_redis
    assert 0 < fake_redis.ttl("user:1") <= 33
