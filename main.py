"""
Main application entry point for resumable Drive folder copy / owner change
"""
import argparse
import sys
import time
from datetime import datetime

from tqdm import tqdm

from config import Config
from auth import GoogleAuthManager
from budget_tracker import BudgetTracker
from copy_engine import TreeCopyEngine
from drive_operations import DriveOperations
from errors import PriorStateNotFoundError, TreeCopyError
from job_setup import JobSetup
from job_state import Options
from logging_config import setup_logging, create_logger
from progress_log import ProgressLog, RunMessage
from state_manager import StateManager

logger = None


def parse_arguments(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description='Resumable Drive folder copy and owner change tool',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  # Copy a folder next to the original
  python main.py --mode copy --folder <folderId>

  # Copy into another folder, with sharing settings
  python main.py --mode copy --folder <folderId> --copy-to custom --dest-parent <id> --copy-permissions

  # Transfer ownership of a whole tree and strip sharing
  python main.py --mode change-owner --folder <folderId> --new-owner someone@example.com --remove-permissions

  # Run one slice of an existing job (for cron)
  python main.py --mode run --job-id <jobId> --once

  # Resume a paused or stopped job from its folder
  python main.py --mode resume --folder <folderId>

  # Ask a running job to stop after the current item
  python main.py --mode stop --job-id <jobId>
        '''
    )

    parser.add_argument(
        '--mode',
        choices=['copy', 'change-owner', 'resume', 'run', 'stop', 'report'],
        required=True,
        help='Operation mode'
    )

    parser.add_argument('--folder', type=str, help='Source folder ID (copy/change-owner) or job folder (resume)')
    parser.add_argument('--job-id', type=str, help='Job ID (run/stop/report)')
    parser.add_argument('--dest-name', type=str, default='', help='Name of the destination folder')
    parser.add_argument(
        '--copy-to',
        choices=['same', 'custom', 'root'],
        default='same',
        help='Where to create the copy (default: same)'
    )
    parser.add_argument('--dest-parent', type=str, help='Destination parent folder ID for --copy-to custom')
    parser.add_argument('--copy-permissions', action='store_true', help='Replicate sharing grants')
    parser.add_argument('--new-owner', type=str, help='Email of the new owner')
    parser.add_argument('--remove-permissions', action='store_true', help='Remove all non-owner grants')
    parser.add_argument('--follow-shortcuts', action='store_true', help='Operate on shortcut targets')
    parser.add_argument('--once', action='store_true', help='Run a single slice and exit')
    parser.add_argument('--no-run', action='store_true', help='Only create the job, do not start it')

    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default=Config.LOG_LEVEL,
        help=f'Logging level (default: {Config.LOG_LEVEL})'
    )

    return parser.parse_args(argv)


def build_client(interactive=True):
    """Authenticate and build the Drive client"""
    auth_manager = GoogleAuthManager(
        Config.CREDENTIALS_FILE,
        Config.SCOPES,
        token_file=Config.TOKEN_FILE,
        delegate_email=Config.DELEGATE_EMAIL,
        interactive=interactive
    )
    auth_manager.authenticate()
    client = DriveOperations(auth_manager.get_drive_service(), page_size=Config.PAGE_SIZE)
    logger.info(f"Acting as {client.get_acting_email()}")
    return client


def start_job_mode(client, state_mgr, args):
    """Create a new copy or owner change job"""
    if not args.folder:
        logger.error("--folder is required")
        return None

    setup = JobSetup(client, timezone=Config.TIMEZONE, log_dir=Config.REPORT_DIR)
    options = Options(
        src_folder_id=args.folder,
        dest_folder_name=args.dest_name,
        copy_to=args.copy_to,
        dest_parent_id=args.dest_parent,
        copy_permissions=args.copy_permissions,
        new_owner_email=args.new_owner,
        follow_shortcuts=args.follow_shortcuts,
        remove_permissions=args.remove_permissions
    )

    if args.mode == 'copy':
        state = setup.initialize_copy_job(options)
        start_message = RunMessage.START_COPYING
    else:
        state = setup.initialize_owner_change_job(options)
        start_message = RunMessage.START_CHANGE_OWNER

    state_mgr.save(state)
    ProgressLog(state.run_metadata.log_sink, state.run_metadata.timezone).log_status(start_message)

    logger.start_job(state.kind, state.job_id, args.folder)
    logger.info(f"Progress log: {state.run_metadata.log_sink}")
    return state.job_id


def resume_mode(client, state_mgr, args):
    """Find a prior job by folder (or id) and clear its stop flag"""
    if args.job_id:
        job_id = args.job_id
    elif args.folder:
        job_id, _ = JobSetup(client).find_prior_job(args.folder)
    else:
        logger.error("--folder or --job-id is required")
        return None

    state = state_mgr.load(job_id)
    if state is None:
        raise PriorStateNotFoundError(args.folder or job_id, f"no saved state for job {job_id}")

    state_mgr.clear_stop(job_id)
    state.run_metadata.stop_requested = False
    state_mgr.save(state)

    logger.info(f"Resuming job {job_id} ({state.kind})")
    return job_id


def run_job(client, state_mgr, job_id, once=False, sleep=time.sleep):
    """
    Scheduler glue: run slices until the job completes, stops, or (with once)
    after a single slice.

    Returns:
        True on success, False if the job does not exist
    """
    state = state_mgr.load(job_id)
    if state is None:
        logger.error(f"No saved state for job {job_id}")
        return False

    progress_log = ProgressLog(state.run_metadata.log_sink, state.run_metadata.timezone)
    budget = BudgetTracker(
        Config.budget_profile(),
        stop_requested=lambda: state_mgr.is_stop_requested(job_id)
    )

    with tqdm(desc=f"{state.kind} {job_id[:8]}", unit='item') as progress:
        engine = TreeCopyEngine(
            client,
            budget,
            progress_log,
            Config,
            checkpoint=state_mgr.save,
            on_item=lambda item, result: progress.update(1)
        )

        while True:
            run_id = state_mgr.start_slice_run(job_id)
            logger.start_slice(job_id)

            result = engine.run_one_slice(state)

            state_mgr.end_slice_run(run_id, result.stop_reason, {
                **result.stats,
                'next_delay_minutes': result.next_delay_minutes
            })
            logger.end_slice(job_id, result.stop_reason, result.stats, result.next_delay_minutes)

            if result.is_complete:
                JobSetup(client).finish_job(state)
                logger.end_job(state.summary())
                state_mgr.delete(job_id)
                return True

            if result.next_delay_minutes is None:
                logger.info(f"Job {job_id} stopped. Use --mode resume to continue")
                return True

            if once:
                print(f"next_delay_minutes={result.next_delay_minutes:g}")
                return True

            logger.info(f"Sleeping {result.next_delay_minutes:g} minutes before next slice")
            sleep(result.next_delay_minutes * 60)


def stop_mode(state_mgr, job_id):
    """Set the cooperative stop flag for a job"""
    if state_mgr.request_stop(job_id):
        logger.info(f"Stop requested for job {job_id}")
        return True
    logger.error(f"Unknown job: {job_id}")
    return False


def report_mode(state_mgr, job_id=None):
    """Report on one job, or list all jobs"""
    if not job_id:
        jobs = state_mgr.list_jobs()
        logger.info("="*80)
        logger.info(f"SAVED JOBS: {len(jobs)}")
        for job in jobs:
            stopped = ' (stop requested)' if job['stop_requested'] else ''
            logger.info(f"{job['job_id']} {job['kind']} folder={job['root_folder_id']}{stopped}")
        logger.info("="*80)
        return True

    report_file = Config.REPORT_DIR / f'state_report_{job_id}_{datetime.now().strftime("%Y%m%d_%H%M%S")}.json'
    if not state_mgr.export_state_report(job_id, str(report_file)):
        return False

    summary = state_mgr.load(job_id).summary()
    logger.info("="*80)
    logger.info("JOB STATE REPORT")
    for key, value in summary.items():
        logger.info(f"{key}: {value}")
    logger.info(f"Report saved: {report_file}")
    logger.info("="*80)
    return True


def main(argv=None):
    """Main application entry point"""
    global logger

    args = parse_arguments(argv)

    log_file = Config.REPORT_DIR / Config.LOG_FILE
    setup_logging(args.log_level, str(log_file))
    logger = create_logger(__name__)

    needs_drive = args.mode in ('copy', 'change-owner', 'resume', 'run')

    try:
        Config.validate(require_credentials=needs_drive)
    except (ValueError, FileNotFoundError) as e:
        logger.error(f"✗ Configuration validation failed: {e}")
        return 1

    with StateManager(Config.STATE_DB_FILE) as state_mgr:
        if args.mode == 'stop':
            if not args.job_id:
                logger.error("--job-id is required")
                return 1
            return 0 if stop_mode(state_mgr, args.job_id) else 1

        if args.mode == 'report':
            return 0 if report_mode(state_mgr, args.job_id) else 1

        try:
            # scheduled runs cannot answer a consent prompt
            client = build_client(interactive=args.mode != 'run')

            if args.mode in ('copy', 'change-owner'):
                job_id = start_job_mode(client, state_mgr, args)
                if job_id is None:
                    return 1
                if args.no_run:
                    print(f"job_id={job_id}")
                    return 0
            elif args.mode == 'resume':
                job_id = resume_mode(client, state_mgr, args)
                if job_id is None:
                    return 1
            else:
                if not args.job_id:
                    logger.error("--job-id is required")
                    return 1
                job_id = args.job_id

            success = run_job(client, state_mgr, job_id, once=args.once)

        except TreeCopyError as e:
            logger.error(f"✗ {e}")
            return 1
        except ValueError as e:
            logger.error(f"✗ Invalid options: {e}")
            return 1

    return 0 if success else 1


if __name__ == '__main__':
    sys.exit(main())
