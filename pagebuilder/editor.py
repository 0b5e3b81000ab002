import copy
import logging

from storefront_backend.exceptions import LayoutValidationError
from .blocks import new_block, normalize_layout, validate_layout, validate_styles

logger = logging.getLogger(__name__)


class LayoutEditor:
    """
    In-memory authoring session over one tenant's homepage blocks.

    Nothing is persisted until the caller hands ``to_layout()`` to
    ``pagebuilder.services.save_layout``. After every insert, delete or move
    each block's ``order`` equals its index in ``blocks``.
    """

    def __init__(self, layout=None):
        layout = layout or {'sections': []}
        self.blocks = normalize_layout(copy.deepcopy(layout))['sections']

    def _index_of(self, block_id):
        for index, block in enumerate(self.blocks):
            if block['id'] == block_id:
                return index
        return None

    def _renumber(self):
        for index, block in enumerate(self.blocks):
            block['order'] = index

    def get_block(self, block_id):
        index = self._index_of(block_id)
        return None if index is None else self.blocks[index]

    def add_block(self, block_type):
        block = new_block(block_type, len(self.blocks))
        self.blocks.append(block)
        logger.debug(f"Added {block_type} block {block['id']} at position {block['order']}")
        return block

    def reorder(self, from_index, to_index):
        size = len(self.blocks)
        if not (0 <= from_index < size and 0 <= to_index < size):
            raise IndexError(f"Cannot move block {from_index} -> {to_index} in a layout of {size} blocks")

        block = self.blocks.pop(from_index)
        self.blocks.insert(to_index, block)
        self._renumber()

    def update_block_content(self, block_id, partial_data):
        """Shallow-merges ``partial_data`` into the block's data. Unknown ids are ignored."""
        block = self.get_block(block_id)
        if block is None:
            return
        block['data'] = {**block['data'], **partial_data}

    def update_block_styles(self, block_id, styles):
        """Replaces the block's styles wholesale. Unknown ids are ignored."""
        validate_styles(styles)
        block = self.get_block(block_id)
        if block is None:
            return
        block['styles'] = copy.deepcopy(styles)

    def delete_block(self, block_id):
        index = self._index_of(block_id)
        if index is None:
            return
        del self.blocks[index]
        self._renumber()

    def apply(self, operation):
        """
        Applies one JSON-shaped editing operation, e.g.
        ``{"op": "reorder", "from": 2, "to": 0}``.
        """
        op = operation.get('op')
        try:
            if op == 'add':
                return self.add_block(operation['type'])
            if op == 'reorder':
                return self.reorder(int(operation['from']), int(operation['to']))
            if op == 'update_content':
                return self.update_block_content(operation['id'], dict(operation['data']))
            if op == 'update_styles':
                return self.update_block_styles(operation['id'], operation['styles'])
            if op == 'delete':
                return self.delete_block(operation['id'])
        except KeyError as e:
            raise LayoutValidationError(f"Operation '{op}' is missing {e}")
        except (ValueError, TypeError, IndexError) as e:
            raise LayoutValidationError(f"Invalid '{op}' operation: {e}")
        raise LayoutValidationError(f"Unknown operation: {op}")

    def to_layout(self):
        layout = {'sections': copy.deepcopy(self.blocks)}
        validate_layout(layout)
        return layout
