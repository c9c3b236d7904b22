import logging

from elasticsearch import BadRequestError

from paintbar.connections import es
from paintbar.systemdata.indices import index_mappings


class InvalidSystemIndex(Exception):
    pass


async def create_or_update_indices() -> list[str]:
    """
    This should be called at startup. It creates the project and title claim indices if they do not exist,
    and otherwise updates their mappings (new fields can be added, existing fields cannot change).

    :return: The names of the indices
    """
    for index, properties in index_mappings().items():
        if await es().indices.exists(index=index):
            logging.info(f"Index {index} exists, performing mapping update if needed.")
            try:
                await es().indices.put_mapping(index=index, properties=properties)
            except BadRequestError as e:
                raise InvalidSystemIndex(
                    f"Failed to update the mapping of index {index}. "
                    "This indicates that the existing mapping is incompatible with the mapping in indices.py, "
                    "which shouldn't happen unless someone changed the mapping manually."
                ) from e
        else:
            logging.info(f"Creating index {index}")
            await es().indices.create(index=index, mappings={"dynamic": "strict", "properties": properties})
    return list(index_mappings().keys())


async def delete_indices() -> None:
    """
    Delete the project and title claim indices. All project metadata will be lost (images stay in the bucket).
    """
    for index in index_mappings():
        logging.warning(f"Deleting index {index}")
        await es().options(ignore_status=[404]).indices.delete(index=index)
