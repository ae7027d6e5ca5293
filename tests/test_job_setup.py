import pytest

from errors import DescendantDestinationError, PriorStateNotFoundError
from job_setup import COPY_MARKER_TITLE, JobSetup
from job_state import JobKind, MimeType, Options


@pytest.fixture
def tree(drive):
    drive.add('s', 'Source', MimeType.FOLDER)
    drive.add('l1', 'Level 1', MimeType.FOLDER, parent='s')
    drive.add('l2', 'Level 2', MimeType.FOLDER, parent='l1')
    drive.add('l3', 'Level 3', MimeType.FOLDER, parent='l2')
    drive.add('elsewhere', 'Elsewhere', MimeType.FOLDER)
    drive.add('nested', 'Nested elsewhere', MimeType.FOLDER, parent='elsewhere')
    return drive


def test_descendant_three_levels_down(tree):
    assert JobSetup(tree).is_descendant(['l3'], 's')


def test_descendant_outside_tree(tree):
    assert not JobSetup(tree).is_descendant(['nested'], 's')


def test_descendant_same_folder(tree):
    assert JobSetup(tree).is_descendant(['s'], 's')


def test_descendant_through_second_parent(tree):
    tree.add('multi', 'Two parents', MimeType.FOLDER, parents=['nested', 'l2'])

    assert JobSetup(tree).is_descendant(['multi'], 's')
    assert not JobSetup(tree).is_descendant(['multi'], 'missing')


def test_descendant_destination_rejected_before_any_change(tree):
    options = Options(src_folder_id='s', copy_to='custom', dest_parent_id='l3')

    with pytest.raises(DescendantDestinationError):
        JobSetup(tree).initialize_copy_job(options)

    assert tree.calls_to('create_folder') == []
    assert tree.calls_to('create_marker') == []


def test_custom_destination_requires_folder(tree):
    with pytest.raises(ValueError):
        JobSetup(tree).initialize_copy_job(Options(src_folder_id='s', copy_to='custom'))


def test_copy_job_initial_state(tree, tmp_path):
    options = Options(src_folder_id='s', copy_to='custom', dest_parent_id='nested',
                      dest_folder_name='Backup')

    state = JobSetup(tree, log_dir=tmp_path).initialize_copy_job(options)

    dest = tree.nodes[state.run_metadata.dest_folder_id]
    assert state.kind == JobKind.COPY
    assert dest.title == 'Backup'
    assert dest.parents == ['nested']
    assert dest.description.startswith('Copy of Source, created ')
    assert state.id_map == {'s': dest.id}
    assert state.completed == {'s': dest.id}
    assert state.pending_folders == ['s']
    assert state.run_metadata.log_sink == str(tmp_path / f'copy_log_{state.job_id}.csv')
    assert tree.nodes[state.run_metadata.state_doc_id].title == \
        COPY_MARKER_TITLE.format(job_id=state.job_id)


def test_copy_to_root(tree):
    state = JobSetup(tree).initialize_copy_job(Options(src_folder_id='l1', copy_to='root'))

    assert tree.nodes[state.run_metadata.dest_folder_id].parents == ['root']


def test_owner_change_job_starts_with_root_folder(tree):
    state = JobSetup(tree).initialize_owner_change_job(
        Options(src_folder_id='l1', remove_permissions=True)
    )

    assert state.kind == JobKind.CHANGE_OWNER
    assert state.leftovers.folder_id == 's'
    assert [n.id for n in state.leftovers.items] == ['l1']
    assert state.pending_folders == []
    assert tree.nodes[state.run_metadata.state_doc_id].parents == ['l1']


def test_find_prior_copy_job(tree):
    state = JobSetup(tree).initialize_copy_job(Options(src_folder_id='s'))

    job_id, new_owner = JobSetup(tree).find_prior_job(state.run_metadata.dest_folder_id)

    assert job_id == state.job_id
    assert new_owner is None


def test_find_prior_job_without_marker(tree):
    with pytest.raises(PriorStateNotFoundError):
        JobSetup(tree).find_prior_job('s')


def test_finish_job_deletes_marker(tree):
    setup = JobSetup(tree)
    state = setup.initialize_copy_job(Options(src_folder_id='s'))
    marker_id = state.run_metadata.state_doc_id

    setup.finish_job(state)

    assert marker_id not in tree.nodes
