import pytest

from storefront_backend.exceptions import LayoutValidationError
from pagebuilder.blocks import BLOCK_TYPES, DEFAULT_BLOCK_DATA, default_block_data, normalize_layout, validate_layout
from pagebuilder.editor import LayoutEditor


def orders_match_indices(editor):
    return [b['order'] for b in editor.blocks] == list(range(len(editor.blocks)))


def test_every_block_type_has_default_data():
    assert set(BLOCK_TYPES) == set(DEFAULT_BLOCK_DATA)


def test_default_block_data_is_a_copy():
    data = default_block_data('hero')
    data['title'] = 'Changed'
    assert DEFAULT_BLOCK_DATA['hero']['title'] == 'Welcome to Our Store'


def test_add_block_appends_with_defaults():
    editor = LayoutEditor()
    hero = editor.add_block('hero')
    products = editor.add_block('products')

    assert [b['id'] for b in editor.blocks] == [hero['id'], products['id']]
    assert products['order'] == 1
    assert products['data'] == DEFAULT_BLOCK_DATA['products']
    assert products['styles'] == {}
    assert hero['id'] != products['id']


def test_add_unknown_type_is_rejected():
    editor = LayoutEditor()
    with pytest.raises(ValueError):
        editor.add_block('carousel3d')


def test_reorder_moves_block_and_renumbers():
    editor = LayoutEditor()
    a, b, c = (editor.add_block(t) for t in ('hero', 'text', 'spacer'))

    editor.reorder(2, 0)

    assert [blk['id'] for blk in editor.blocks] == [c['id'], a['id'], b['id']]
    assert orders_match_indices(editor)


def test_reorder_out_of_range_leaves_layout_unchanged():
    editor = LayoutEditor()
    editor.add_block('hero')
    editor.add_block('text')
    before = [b['id'] for b in editor.blocks]

    with pytest.raises(IndexError):
        editor.reorder(0, 5)
    assert [b['id'] for b in editor.blocks] == before


def test_update_content_merges_shallowly():
    editor = LayoutEditor()
    block = editor.add_block('products')

    editor.update_block_content(block['id'], {'title': 'Best Sellers', 'collection': 'best_sellers'})

    data = editor.get_block(block['id'])['data']
    assert data['title'] == 'Best Sellers'
    assert data['collection'] == 'best_sellers'
    assert data['limit'] == 8


def test_update_content_unknown_id_is_noop():
    editor = LayoutEditor()
    editor.add_block('text')
    before = editor.to_layout()

    editor.update_block_content('missing', {'content': 'x'})

    assert editor.to_layout() == before


def test_update_styles_replaces_wholesale():
    editor = LayoutEditor()
    block = editor.add_block('text')
    editor.update_block_styles(block['id'], {'padding': {'top': '10px'}, 'textAlign': 'left'})

    editor.update_block_styles(block['id'], {'backgroundColor': '#fff'})

    assert editor.get_block(block['id'])['styles'] == {'backgroundColor': '#fff'}


def test_update_styles_rejects_unknown_alignment():
    editor = LayoutEditor()
    block = editor.add_block('text')
    with pytest.raises(LayoutValidationError):
        editor.update_block_styles(block['id'], {'textAlign': 'justify'})


def test_delete_block_renumbers():
    editor = LayoutEditor()
    a, b, c = (editor.add_block(t) for t in ('hero', 'text', 'spacer'))

    editor.delete_block(b['id'])

    assert [blk['id'] for blk in editor.blocks] == [a['id'], c['id']]
    assert orders_match_indices(editor)


def test_editor_normalizes_loaded_layout():
    layout = {'sections': [
        {'id': 'b', 'type': 'text', 'order': 7, 'data': {'content': 'second'}},
        {'id': 'a', 'type': 'hero', 'order': 2, 'data': {}},
    ]}

    editor = LayoutEditor(layout)

    assert [blk['id'] for blk in editor.blocks] == ['a', 'b']
    assert orders_match_indices(editor)
    # The caller's document is not touched.
    assert layout['sections'][0]['order'] == 7


def test_apply_operations():
    editor = LayoutEditor()
    added = editor.apply({'op': 'add', 'type': 'cta'})
    editor.apply({'op': 'update_content', 'id': added['id'], 'data': {'buttonText': 'Buy'}})
    editor.apply({'op': 'add', 'type': 'spacer'})
    editor.apply({'op': 'reorder', 'from': 1, 'to': 0})

    assert [b['type'] for b in editor.blocks] == ['spacer', 'cta']
    assert editor.blocks[1]['data']['buttonText'] == 'Buy'

    editor.apply({'op': 'delete', 'id': added['id']})
    assert [b['type'] for b in editor.blocks] == ['spacer']


@pytest.mark.parametrize('operation', [
    {'op': 'explode'},
    {'op': 'add'},
    {'op': 'add', 'type': 'unknown'},
    {'op': 'reorder', 'from': 0, 'to': 3},
    {'op': 'update_styles', 'id': 'x', 'styles': {'color': 'red'}},
])
def test_apply_invalid_operation_raises_layout_error(operation):
    editor = LayoutEditor()
    editor.add_block('hero')
    with pytest.raises(LayoutValidationError):
        editor.apply(operation)


def test_validate_layout_rejects_duplicate_ids():
    layout = {'sections': [
        {'id': 'same', 'type': 'text', 'order': 0, 'data': {}},
        {'id': 'same', 'type': 'hero', 'order': 1, 'data': {}},
    ]}
    with pytest.raises(LayoutValidationError):
        validate_layout(layout)


def test_validate_layout_rejects_missing_sections():
    with pytest.raises(LayoutValidationError):
        validate_layout({'blocks': []})


def test_normalize_layout_fills_styles():
    normalized = normalize_layout({'sections': [{'id': 'a', 'type': 'text', 'order': 3, 'data': {}}]})
    assert normalized['sections'][0] == {'id': 'a', 'type': 'text', 'order': 0, 'data': {}, 'styles': {}}
