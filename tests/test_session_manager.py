import asyncio

import pytest

from exam_portal.errors import IdentityUnavailable, UnknownQuestionReference
from exam_portal.models.session_state import SessionStatus
from exam_portal.services.exam_service import ScoreResult
from exam_portal.services.identity import AnonymousIdentityResolver
from exam_portal.services.session_manager import ExamSessionManager
from exam_portal.services.session_pointer import LocalSessionPointer, pointer_key


QIDS = ["p1", "p2", "p3"]


async def _start(manager, subject="physics", minutes=30):
    result = await manager.initialize(subject, total_questions=len(QIDS),
                                      duration_minutes=minutes, question_ids=QIDS)
    return result.session


class TestInitialize:
    def test_creates_and_persists_new_session(self, manager, store, clock, browser_storage):
        async def scenario():
            result = await manager.initialize("physics", total_questions=3, duration_minutes=30,
                                              chapter_id="Optics", question_ids=QIDS)
            return result

        result = asyncio.run(scenario())
        session = result.session

        assert result.error is None
        assert result.restored is False
        assert session.status == SessionStatus.IN_PROGRESS
        assert session.start_time == clock.now
        assert session.end_time == clock.now + 30 * 60
        assert session.answers == {}
        assert session.user_id == browser_storage["anonymous_uid"]
        assert store.raw(session.id)["status"] == "IN_PROGRESS"
        assert browser_storage[pointer_key("physics")] == session.id

    def test_restores_live_session_without_recomputing(self, manager, clock):
        async def scenario():
            first = await _start(manager)
            manager.save_answer(first, "p1", "A")
            await manager.flush()
            clock.advance(10 * 60)
            again = await manager.initialize("physics", total_questions=3, duration_minutes=90,
                                             question_ids=QIDS)
            return first, again

        first, again = asyncio.run(scenario())

        assert again.restored is True
        assert again.session.id == first.id
        assert again.session.end_time == first.end_time
        assert again.session.answers["p1"].selected_option == "A"

    def test_expired_session_is_not_restored(self, manager, clock, browser_storage):
        async def scenario():
            first = await _start(manager, minutes=1)
            clock.advance(61)
            again = await manager.initialize("physics", total_questions=3, duration_minutes=1)
            return first, again

        first, again = asyncio.run(scenario())

        assert again.restored is False
        assert again.session.id != first.id
        assert browser_storage[pointer_key("physics")] == again.session.id

    def test_pointer_is_per_subject(self, manager):
        async def scenario():
            physics = await _start(manager, "physics")
            chemistry = await _start(manager, "chemistry")
            return physics, chemistry

        physics, chemistry = asyncio.run(scenario())
        assert physics.id != chemistry.id

    def test_identity_failure_aborts(self, store, clock, browser_storage):
        manager = ExamSessionManager(
            store, AnonymousIdentityResolver(browser_storage, enabled=False),
            LocalSessionPointer(browser_storage), clock=clock,
        )
        with pytest.raises(IdentityUnavailable):
            asyncio.run(_start(manager))
        assert store.puts == []

    def test_create_write_failure_is_reported_but_session_usable(self, manager, store, browser_storage):
        store.fail_put = True
        result = asyncio.run(manager.initialize("physics", total_questions=3, duration_minutes=30))

        assert result.error is not None
        assert result.session.status == SessionStatus.IN_PROGRESS
        assert pointer_key("physics") not in browser_storage

    def test_load_failure_falls_through_to_creation(self, manager, store, browser_storage):
        async def scenario():
            first = await _start(manager)
            # 손상된 문서
            store._documents[first.id]["end_time"] = "not-a-time"
            again = await _start(manager)
            return first, again

        first, again = asyncio.run(scenario())
        assert again.id != first.id

    def test_missing_document_falls_through_to_creation(self, manager, browser_storage):
        browser_storage[pointer_key("physics")] = "does-not-exist"
        session = asyncio.run(_start(manager))
        assert session.id != "does-not-exist"

    def test_rejects_non_positive_duration(self, manager):
        with pytest.raises(ValueError):
            asyncio.run(manager.initialize("physics", total_questions=3, duration_minutes=0))


class TestSaveAnswer:
    def test_last_write_wins_locally(self, manager):
        async def scenario():
            session = await _start(manager)
            manager.save_answer(session, "p1", "A")
            manager.save_answer(session, "p1", "C")
            await manager.flush()
            return session

        session = asyncio.run(scenario())
        assert session.answers["p1"].selected_option == "C"
        assert len(session.answers) == 1

    def test_same_key_writes_reach_store_in_call_order(self, manager, store):
        async def scenario():
            session = await _start(manager)
            # 첫 번째 저장이 더 느려도 두 번째 값이 최종 저장되어야 한다
            store.patch_delays = [0.05, 0]
            manager.save_answer(session, "p1", "A")
            manager.save_answer(session, "p1", "C")
            await manager.flush()
            return session

        session = asyncio.run(scenario())
        assert store.raw(session.id)["answers"]["p1"]["selected_option"] == "C"
        options = [f["answers.p1"].selected_option for _, f in store.patches]
        assert options == ["A", "C"]

    def test_local_update_is_synchronous(self, manager, store):
        async def scenario():
            # 문제 세트가 없는 세션은 ID 검증을 건너뛴다
            result = await manager.initialize("math", total_questions=1, duration_minutes=5)
            store.patch_delays = [0.05]
            manager.save_answer(result.session, 1, "B")
            snapshot = result.session.answers["1"].selected_option
            persisted = store.raw(result.session.id)["answers"]
            await manager.flush()
            return snapshot, persisted

        snapshot, persisted = asyncio.run(scenario())
        assert snapshot == "B"
        assert persisted == {}

    def test_write_failure_keeps_local_state(self, manager, store):
        async def scenario():
            session = await _start(manager)
            store.fail_patch = True
            manager.save_answer(session, "p2", "D")
            await manager.flush()
            return session

        session = asyncio.run(scenario())
        assert session.answers["p2"].selected_option == "D"
        assert store.raw(session.id)["answers"] == {}

    def test_unknown_question_raises(self, manager):
        async def scenario():
            session = await _start(manager)
            with pytest.raises(UnknownQuestionReference):
                manager.save_answer(session, "zzz", "A")
            return session

        session = asyncio.run(scenario())
        assert session.answers == {}

    def test_terminal_session_is_unchanged(self, manager, store):
        async def scenario():
            session = await _start(manager)
            await manager.finish(session)
            patches_before = len(store.patches)
            manager.save_answer(session, "p1", "A")
            await manager.flush()
            return session, patches_before

        session, patches_before = asyncio.run(scenario())
        assert session.answers == {}
        assert len(store.patches) == patches_before

    def test_absent_session_is_noop(self, manager):
        assert manager.save_answer(None, "p1", "A") is None


class TestFinish:
    def test_finish_is_idempotent(self, manager, store):
        async def scenario():
            session = await _start(manager)
            await manager.finish(session)
            await manager.finish(session)
            return session

        session = asyncio.run(scenario())
        status_writes = [f for _, f in store.patches if "status" in f]
        assert session.status == SessionStatus.COMPLETED
        assert len(status_writes) == 1
        assert store.raw(session.id)["status"] == "COMPLETED"

    def test_concurrent_finish_writes_once(self, manager, store):
        async def scenario():
            session = await _start(manager)
            store.patch_delays = [0.02]
            await asyncio.gather(manager.finish(session), manager.finish(session))
            return session

        asyncio.run(scenario())
        assert len([f for _, f in store.patches if "status" in f]) == 1

    def test_cancelled_caller_does_not_lose_status_write(self, manager, store, browser_storage):
        async def scenario():
            session = await _start(manager)
            store.patch_delays = [0.05]
            caller = asyncio.ensure_future(manager.finish(session))
            await asyncio.sleep(0.01)
            caller.cancel()
            await manager.flush()
            return session, caller.cancelled()

        session, cancelled = asyncio.run(scenario())
        assert cancelled is True
        assert store.raw(session.id)["status"] == "COMPLETED"
        assert pointer_key("physics") not in browser_storage

    def test_second_finish_waits_for_first_write(self, manager, store, browser_storage):
        async def scenario():
            session = await _start(manager)
            store.patch_delays = [0.05]
            first = asyncio.ensure_future(manager.finish(session))
            await asyncio.sleep(0.01)
            await manager.finish(session)
            stored = store.raw(session.id)["status"]
            pointer = browser_storage.get(pointer_key("physics"))
            await first
            return stored, pointer

        stored, pointer = asyncio.run(scenario())
        assert stored == "COMPLETED"
        assert pointer is None

    def test_finish_clears_pointer_so_next_start_is_new(self, manager, browser_storage):
        async def scenario():
            first = await _start(manager)
            await manager.finish(first)
            pointer_after_finish = browser_storage.get(pointer_key("physics"))
            second = await manager.initialize("physics", total_questions=3, duration_minutes=30)
            return first, second, pointer_after_finish

        first, second, pointer_after_finish = asyncio.run(scenario())
        assert pointer_after_finish is None
        assert second.restored is False
        assert second.session.id != first.id

    def test_finish_write_failure_still_completes_in_memory(self, manager, store, browser_storage):
        async def scenario():
            session = await _start(manager)
            store.fail_patch = True
            await manager.finish(session)
            return session

        session = asyncio.run(scenario())
        assert session.status == SessionStatus.COMPLETED
        assert store.raw(session.id)["status"] == "IN_PROGRESS"
        assert pointer_key("physics") not in browser_storage

    def test_abandon_is_terminal(self, manager):
        async def scenario():
            session = await _start(manager)
            await manager.abandon(session)
            await manager.finish(session)
            return session

        session = asyncio.run(scenario())
        assert session.status == SessionStatus.ABANDONED


class TestRecordScore:
    def test_records_on_completed_session(self, manager, store):
        async def scenario():
            session = await _start(manager)
            await manager.finish(session)
            await manager.record_score(session, ScoreResult(2, 3, 67))
            return session

        session = asyncio.run(scenario())
        assert session.score == 67
        assert store.raw(session.id)["score"] == 67

    def test_rejects_in_progress_session(self, manager):
        async def scenario():
            session = await _start(manager)
            await manager.record_score(session, ScoreResult(0, 3, 0))

        with pytest.raises(ValueError):
            asyncio.run(scenario())
