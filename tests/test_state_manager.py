import json

import pytest

from job_state import JobKind, JobState, Node, Options
from state_manager import StateManager


@pytest.fixture
def state_mgr(tmp_path):
    with StateManager(str(tmp_path / 'state.db')) as manager:
        yield manager


@pytest.fixture
def state():
    state = JobState(kind=JobKind.COPY, options=Options(src_folder_id='f1'))
    state.map_folder('f1', 'd1')
    state.pending_folders.append('f1')
    return state


def test_save_and_load(state_mgr, state):
    state_mgr.save(state)
    state.push_retry(Node('a', 'A', 'text/plain', ['f1']), ConnectionError('timeout'))
    state_mgr.save(state)

    loaded = state_mgr.load(state.job_id)

    assert loaded == state
    assert loaded.retry_queue[0].attempt == 1


def test_load_unknown_job(state_mgr):
    assert state_mgr.load('missing') is None


def test_delete(state_mgr, state):
    state_mgr.save(state)
    state_mgr.delete(state.job_id)

    assert state_mgr.load(state.job_id) is None
    assert state_mgr.list_jobs() == []


def test_stop_flag(state_mgr, state):
    assert not state_mgr.request_stop('missing')

    state_mgr.save(state)
    assert not state_mgr.is_stop_requested(state.job_id)

    assert state_mgr.request_stop(state.job_id)
    assert state_mgr.is_stop_requested(state.job_id)

    # saving progress does not clear a pending stop
    state_mgr.save(state)
    assert state_mgr.is_stop_requested(state.job_id)

    state_mgr.clear_stop(state.job_id)
    assert not state_mgr.is_stop_requested(state.job_id)


def test_list_jobs(state_mgr, state):
    state_mgr.save(state)

    jobs = state_mgr.list_jobs()

    assert len(jobs) == 1
    assert jobs[0]['job_id'] == state.job_id
    assert jobs[0]['kind'] == JobKind.COPY
    assert jobs[0]['root_folder_id'] == 'f1'


def test_slice_runs(state_mgr, state):
    state_mgr.save(state)
    run_id = state_mgr.start_slice_run(state.job_id)
    state_mgr.end_slice_run(run_id, 'time_up', {'processed': 7, 'failed': 1, 'next_delay_minutes': 6})

    runs = state_mgr.get_slice_runs(state.job_id)

    assert len(runs) == 1
    assert runs[0]['status'] == 'time_up'
    assert runs[0]['items_processed'] == 7
    assert runs[0]['items_failed'] == 1
    assert runs[0]['next_delay_minutes'] == 6


def test_export_state_report(state_mgr, state, tmp_path):
    state_mgr.save(state)
    report_file = tmp_path / 'report.json'

    assert state_mgr.export_state_report(state.job_id, str(report_file))
    assert not state_mgr.export_state_report('missing', str(tmp_path / 'other.json'))

    report = json.loads(report_file.read_text())
    assert report['progress']['job_id'] == state.job_id
    assert report['progress']['pending_folders'] == 1
