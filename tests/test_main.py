import pytest

import main
from config import Config
from job_setup import JobSetup
from job_state import MimeType, Options
from logging_config import create_logger
from state_manager import StateManager


@pytest.fixture(autouse=True)
def job_logger(monkeypatch):
    monkeypatch.setattr(main, 'logger', create_logger('tests'))


@pytest.fixture
def state_mgr(tmp_path):
    with StateManager(str(tmp_path / 'state.db')) as manager:
        yield manager


@pytest.fixture
def job(drive, state_mgr, tmp_path):
    drive.add('f1', 'Folder', MimeType.FOLDER)
    drive.add('sub', 'Sub', MimeType.FOLDER, parent='f1')
    drive.add('l1', 'Leaf', parent='sub')
    state = JobSetup(drive, log_dir=tmp_path).initialize_copy_job(Options(src_folder_id='f1'))
    state_mgr.save(state)
    return state


def test_run_job_to_completion(drive, state_mgr, job):
    sleeps = []

    assert main.run_job(drive, state_mgr, job.job_id, sleep=sleeps.append)

    assert sleeps == []
    assert state_mgr.load(job.job_id) is None
    assert job.run_metadata.state_doc_id not in drive.nodes
    assert [args[0] for args in drive.calls_to('copy_node')] == ['l1']

    runs = state_mgr.get_slice_runs(job.job_id)
    assert [r['status'] for r in runs] == ['complete']
    assert runs[0]['items_processed'] == 2


def test_run_job_respects_stop_flag(drive, state_mgr, job):
    state_mgr.request_stop(job.job_id)

    assert main.run_job(drive, state_mgr, job.job_id, once=True)

    assert drive.calls_to('copy_node') == []
    assert state_mgr.load(job.job_id) is not None
    assert [r['status'] for r in state_mgr.get_slice_runs(job.job_id)] == ['user_stopped']


def test_run_job_unknown(drive, state_mgr):
    assert not main.run_job(drive, state_mgr, 'missing')


def test_stop_mode(state_mgr, job):
    assert main.stop_mode(state_mgr, job.job_id)
    assert state_mgr.is_stop_requested(job.job_id)
    assert not main.stop_mode(state_mgr, 'missing')


def test_report_mode(state_mgr, job):
    assert main.report_mode(state_mgr)
    assert main.report_mode(state_mgr, job.job_id)
    assert list(Config.REPORT_DIR.glob(f'state_report_{job.job_id}_*.json'))
    assert not main.report_mode(state_mgr, 'missing')


def test_parse_arguments():
    args = main.parse_arguments([
        '--mode', 'copy', '--folder', 'f1', '--copy-to', 'custom',
        '--dest-parent', 'd1', '--copy-permissions'
    ])

    assert args.mode == 'copy'
    assert args.copy_to == 'custom'
    assert args.dest_parent == 'd1'
    assert args.copy_permissions
    assert not args.once


def test_parse_arguments_rejects_unknown_mode():
    with pytest.raises(SystemExit):
        main.parse_arguments(['--mode', 'sync'])


def test_main_stop_unknown_job(monkeypatch, tmp_path):
    monkeypatch.setattr(Config, 'STATE_DB_FILE', str(tmp_path / 'state.db'))
    monkeypatch.setattr(main, 'setup_logging', lambda *args, **kwargs: None)

    assert main.main(['--mode', 'stop', '--job-id', 'missing']) == 1
    assert main.main(['--mode', 'stop']) == 1
