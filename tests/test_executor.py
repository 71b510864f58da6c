import asyncio

import pytest

from conftest import FakeOpener
from zipcast.errors import ExtractionError
from zipcast.executor import Executor
from zipcast.pipeline import PipelineState


def run_executor(request, opener, **kwargs):
    outcomes_seen = []
    executor = Executor(
        request,
        on_outcome=outcomes_seen.append,
        open_session=opener,
        **kwargs,
    )
    outcomes = asyncio.run(executor.run_all())
    return executor, outcomes, outcomes_seen


def test_deploys_to_every_host(make_request):
    opener = FakeOpener()
    request = make_request("h1:22", "h2:22")

    executor, outcomes, seen = run_executor(request, opener, enable_logging=False)

    assert sorted(str(o.host) for o in outcomes) == ["h1:22", "h2:22"]
    assert all(o.succeeded for o in outcomes)
    assert len(seen) == 2
    for host in ("h1:22", "h2:22"):
        remote = opener.remote(host)
        assert remote.dirs >= {"app", "app/bin"}
        assert set(remote.files) == {"app/bin/run.sh", "app/README.md", "app/config.env"}
        assert remote.commands == ["cd app && ./install.sh"]
        assert executor.states[host].status == PipelineState.DONE
    assert executor.log_dir is None


def test_unreachable_host_does_not_affect_others(make_request):
    opener = FakeOpener(unreachable=("h2:22",))
    request = make_request("h1:22", "h2:22")

    executor, outcomes, _ = run_executor(request, opener, enable_logging=False)

    by_host = {str(o.host): o for o in outcomes}
    assert by_host["h1:22"].succeeded
    assert not by_host["h2:22"].succeeded
    assert executor.states["h2:22"].status == PipelineState.FAILED
    assert opener.remote("h1:22").commands == ["cd app && ./install.sh"]


def test_failed_install_is_isolated(make_request):
    opener = FakeOpener()
    opener.remote("h1:22").exit_status = 1
    request = make_request("h1:22", "h2:22", "h3:2222")

    _, outcomes, _ = run_executor(request, opener, enable_logging=False)

    assert {str(o.host): o.succeeded for o in outcomes} == {
        "h1:22": False,
        "h2:22": True,
        "h3:2222": True,
    }


def test_extraction_failure_starts_no_pipeline(make_request, tmp_path):
    bogus = tmp_path / "broken.zip"
    bogus.write_text("not an archive")
    opener = FakeOpener()
    request = make_request("h1:22", "h2:22", archive_path=bogus)

    with pytest.raises(ExtractionError):
        run_executor(request, opener, enable_logging=False)

    assert opener.calls == []


def test_explicit_staging_dir_is_kept(make_request, tmp_path):
    staging = tmp_path / "stage"
    request = make_request("h1:22", staging_dir=staging)

    executor, _, _ = run_executor(request, FakeOpener(), enable_logging=False)

    assert executor.staging.root == staging
    assert (staging / "bin" / "run.sh").exists()


def test_per_host_log_files(make_request, tmp_path):
    source = tmp_path / "deploy.env"
    source.write_text("USERNAME=deploy\n")
    request = make_request("h1:22", "h2:22", source_path=source)

    executor, _, _ = run_executor(request, FakeOpener(unreachable=("h2:22",)))

    log_dir = executor.log_dir
    assert log_dir.parent == tmp_path / "logs"
    assert (log_dir / "config.env").read_text() == "USERNAME=deploy\n"
    h1_log = (log_dir / "h1_22.log").read_text()
    assert "Connected successfully" in h1_log
    assert "$ cd app && ./install.sh" in h1_log
    assert "ERROR:" in (log_dir / "h2_22.log").read_text()


def test_unexpected_errors_become_failed_outcomes(make_request):
    class BrokenOpener(FakeOpener):
        async def __call__(self, address, username, password):
            raise RuntimeError("boom")

    request = make_request("h1:22")
    statuses = []

    executor, outcomes, seen = run_executor(
        request,
        BrokenOpener(),
        enable_logging=False,
        on_status=lambda host, state: statuses.append(state),
    )

    assert len(outcomes) == 1
    assert not outcomes[0].succeeded
    assert "boom" in outcomes[0].error
    assert seen == outcomes
    assert statuses == [PipelineState.FAILED]


def test_leftovers_in_staging_dir_are_not_deployed(make_request, tmp_path):
    staging = tmp_path / "stage"
    staging.mkdir()
    (staging / "stale-from-last-release.sh").write_text("echo old\n")
    opener = FakeOpener()
    request = make_request("h1:22", staging_dir=staging)

    executor, outcomes, _ = run_executor(request, opener, enable_logging=False)

    assert outcomes[0].succeeded
    assert {str(e.path) for e in executor.staging.entries} == {
        "bin",
        "bin/run.sh",
        "README.md",
    }
    assert set(opener.remote("h1:22").files) == {
        "app/bin/run.sh",
        "app/README.md",
        "app/config.env",
    }
