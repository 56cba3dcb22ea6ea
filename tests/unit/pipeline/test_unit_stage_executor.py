# tests/unit/pipeline/test_unit_stage_executor.py — v1
"""Tests for pipeline/stage_executor.py and pipeline/actions.py."""

from __future__ import annotations

import asyncio
import sys
import time
from unittest.mock import AsyncMock

import pytest

from shipline.core.errors import FingerprintCollision
from shipline.core.models import Service, StageResult, TriggerPolicy
from shipline.pipeline.actions import CommandAction
from shipline.pipeline.context import RunContext, StageContext
from shipline.pipeline.stage_executor import StageExecutor


@pytest.fixture
def run_ctx(release_trigger) -> RunContext:
    return RunContext(run_id="run-1", trigger=release_trigger,
                      policy=TriggerPolicy(release_branch="main"))


def _counting_test_service(service_factory, tmp_path, exit_code: int = 0) -> Service:
    """A service whose test command appends a line to a counter file per execution."""
    counter = tmp_path / "executions.txt"
    command = [
        sys.executable, "-c",
        f"open({str(counter)!r}, 'a').write('x\\n'); print('ran'); raise SystemExit({exit_code})",
    ]
    return service_factory("api", test_command=command, with_deploy=False)


def _executions(tmp_path) -> int:
    path = tmp_path / "executions.txt"
    return len(path.read_text().splitlines()) if path.exists() else 0


async def _run_all(executor: StageExecutor, service: Service, run: RunContext) -> list[StageResult]:
    results: dict[str, StageResult] = {}
    for stage in service.stages:
        upstream = results.get(stage.consumes) if stage.consumes else None
        results[stage.name] = await executor.run(
            stage, StageContext(service=service, run=run, upstream=upstream)
        )
    return list(results.values())


class TestCacheHitMiss:
    @pytest.mark.asyncio
    async def test_miss_then_hit(self, executor, service_factory, tmp_path, run_ctx):
        service = _counting_test_service(service_factory, tmp_path)
        stage = service.stages[0]
        first = await executor.run(stage, StageContext(service=service, run=run_ctx))
        second = await executor.run(stage, StageContext(service=service, run=run_ctx))
        assert first.status == "passed"
        assert "ran" in first.logs
        assert second.status == "cached"
        assert second.fingerprint == first.fingerprint
        assert second.output == first.output
        assert _executions(tmp_path) == 1

    @pytest.mark.asyncio
    async def test_input_change_reruns(self, executor, service_factory, tmp_path, run_ctx):
        service = _counting_test_service(service_factory, tmp_path)
        stage = service.stages[0]
        await executor.run(stage, StageContext(service=service, run=run_ctx))
        (service.source / "app" / "main.py").write_text("print('changed')\n")
        result = await executor.run(stage, StageContext(service=service, run=run_ctx))
        assert result.status == "passed"
        assert _executions(tmp_path) == 2

    @pytest.mark.asyncio
    async def test_hit_takes_lease(self, executor, cache_store, service_factory, tmp_path, run_ctx):
        service = _counting_test_service(service_factory, tmp_path)
        result = await executor.run(service.stages[0], StageContext(service=service, run=run_ctx))
        assert cache_store.is_leased(result.fingerprint)

    @pytest.mark.asyncio
    async def test_cache_disabled(self, cache_store, build_backend, service_factory, tmp_path, run_ctx):
        executor = StageExecutor(cache_store, {"test": CommandAction()}, cache_enabled=False)
        service = _counting_test_service(service_factory, tmp_path)
        stage = service.stages[0]
        await executor.run(stage, StageContext(service=service, run=run_ctx))
        result = await executor.run(stage, StageContext(service=service, run=run_ctx))
        assert result.status == "passed"
        assert len(cache_store) == 0

    @pytest.mark.asyncio
    async def test_cache_read_error_is_miss(self, executor, cache_store, service_factory,
                                            tmp_path, run_ctx):
        service = _counting_test_service(service_factory, tmp_path)
        cache_store.get = AsyncMock(side_effect=OSError("disk gone"))
        result = await executor.run(service.stages[0], StageContext(service=service, run=run_ctx))
        assert result.status == "passed"


class TestFailures:
    @pytest.mark.asyncio
    async def test_test_failure_reported(self, executor, cache_store, service_factory,
                                         tmp_path, run_ctx):
        service = _counting_test_service(service_factory, tmp_path, exit_code=1)
        result = await executor.run(service.stages[0], StageContext(service=service, run=run_ctx))
        assert result.status == "failed"
        assert result.error_type == "TestFailure"
        assert result.execution_error is False
        assert "ran" in result.logs
        assert len(cache_store) == 0

    @pytest.mark.asyncio
    async def test_failure_not_cached_and_not_retried(self, executor, service_factory,
                                                      tmp_path, run_ctx):
        service = _counting_test_service(service_factory, tmp_path, exit_code=1)
        stage = service.stages[0]
        await executor.run(stage, StageContext(service=service, run=run_ctx))
        again = await executor.run(stage, StageContext(service=service, run=run_ctx))
        assert again.status == "failed"
        assert _executions(tmp_path) == 2

    @pytest.mark.asyncio
    async def test_build_failure(self, executor, build_backend, service_factory, run_ctx):
        service = service_factory("api", with_test=False, with_deploy=False)
        build_backend.fail_builds.add("api")
        result = await executor.run(service.stages[0], StageContext(service=service, run=run_ctx))
        assert result.status == "failed"
        assert result.error_type == "BuildFailure"
        assert result.logs == "error: boom"

    @pytest.mark.asyncio
    async def test_transient_exhaustion_is_execution_error(self, executor, build_backend,
                                                           service_factory, run_ctx):
        service = service_factory("api", with_test=False, with_deploy=False)
        build_backend.transient_push_failures = 5
        build, push = await _run_all(executor, service, run_ctx)
        assert build.status == "passed"
        assert push.status == "failed"
        assert push.error_type == "RetryExhausted"
        assert push.execution_error is True

    @pytest.mark.asyncio
    async def test_missing_executable_is_execution_error(self, executor, service_factory, run_ctx):
        service = service_factory("api", test_command=["no-such-binary-xyz"], with_deploy=False)
        result = await executor.run(service.stages[0], StageContext(service=service, run=run_ctx))
        assert result.status == "failed"
        assert result.execution_error is True

    @pytest.mark.asyncio
    async def test_collision_propagates(self, executor, cache_store, service_factory,
                                        tmp_path, run_ctx):
        service = _counting_test_service(service_factory, tmp_path)
        cache_store.put = AsyncMock(side_effect=FingerprintCollision("k", "a" * 12, "b" * 12))
        with pytest.raises(FingerprintCollision):
            await executor.run(service.stages[0], StageContext(service=service, run=run_ctx))


class TestBuildPushDeploy:
    @pytest.mark.asyncio
    async def test_push_tags_latest_and_commit(self, executor, build_backend,
                                               service_factory, run_ctx):
        service = service_factory("api", with_test=False, with_deploy=False)
        build, push = await _run_all(executor, service, run_ctx)
        image, repository, tags = build_backend.pushes[0]
        assert image == build.output.reference
        assert tags == ["latest", run_ctx.trigger.commit]
        assert push.output.reference == f"{repository}:{run_ctx.trigger.commit}"

    @pytest.mark.asyncio
    async def test_push_key_depends_on_commit(self, executor, service_factory, run_ctx,
                                              feature_trigger):
        service = service_factory("api", with_test=False, with_deploy=False)
        other_run = RunContext(run_id="run-2", trigger=feature_trigger.model_copy(
            update={"commit": "deadbeef"}))
        keys_a = executor.plan(service, run_ctx)
        keys_b = executor.plan(service, other_run)
        assert keys_a["image"] == keys_b["image"]
        assert keys_a["publish"] != keys_b["publish"]

    @pytest.mark.asyncio
    async def test_plan_matches_run(self, executor, service_factory, run_ctx):
        service = service_factory("api", with_deploy=False)
        planned = executor.plan(service, run_ctx)
        results = await _run_all(executor, service, run_ctx)
        assert {r.stage_name: r.fingerprint for r in results} == planned

    @pytest.mark.asyncio
    async def test_deploy_never_cached(self, executor, cluster_backend, service_factory, run_ctx):
        service = service_factory("api", with_test=False)
        first = await _run_all(executor, service, run_ctx)
        second = await _run_all(executor, service, run_ctx)
        assert [r.status for r in first] == ["passed", "passed", "passed"]
        assert [r.status for r in second] == ["cached", "cached", "passed"]
        assert len(cluster_backend.applied) == 2

    @pytest.mark.asyncio
    async def test_deploy_failure_reports_rollback(self, executor, cluster_backend,
                                                   service_factory, run_ctx):
        service = service_factory("api", with_test=False)
        cluster_backend.running["api"] = "registry.example.com/acme/api:previous"
        cluster_backend.unhealthy.add(f"registry.example.com/acme/api:{run_ctx.trigger.commit}")
        *_, deploy = await _run_all(executor, service, run_ctx)
        assert deploy.status == "failed"
        assert deploy.error_type == "RolloutTimeout"
        assert deploy.execution_error is False
        assert deploy.deployment.rolled_back is True
        assert cluster_backend.running["api"] == "registry.example.com/acme/api:previous"

    @pytest.mark.asyncio
    async def test_deploy_not_started_after_cancel(self, executor, cluster_backend,
                                                   service_factory, run_ctx):
        service = service_factory("api", with_test=False)
        build, push, rollout = service.stages
        image = await executor.run(build, StageContext(service=service, run=run_ctx))
        pushed = await executor.run(
            push, StageContext(service=service, run=run_ctx, upstream=image))
        run_ctx.cancel("operator")
        result = await executor.run(
            rollout, StageContext(service=service, run=run_ctx, upstream=pushed))
        assert result.status == "skipped"
        assert result.error_type == "StageCancelled"
        assert cluster_backend.applied == []


class TestEventLoopResponsiveness:
    @pytest.mark.asyncio
    async def test_fingerprinting_does_not_block_siblings(self, executor, service_factory,
                                                          run_ctx, monkeypatch):
        import shipline.pipeline.stage_executor as stage_executor_module

        real_fingerprint = stage_executor_module.compute_fingerprint

        def slow_fingerprint(*args, **kwargs):
            time.sleep(0.3)  # stands in for hashing a large input tree
            return real_fingerprint(*args, **kwargs)

        monkeypatch.setattr(stage_executor_module, "compute_fingerprint", slow_fingerprint)
        service = service_factory("api", with_deploy=False)
        ticks = 0

        async def ticker():
            nonlocal ticks
            while True:
                await asyncio.sleep(0.01)
                ticks += 1

        ticking = asyncio.create_task(ticker())
        try:
            result = await executor.run(service.stages[0],
                                        StageContext(service=service, run=run_ctx))
        finally:
            ticking.cancel()
        assert result.status == "passed"
        assert ticks >= 10
