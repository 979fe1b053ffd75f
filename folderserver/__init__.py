"""
folderserver - Folder hierarchy and content resolution with a SQLAlchemy + SQLite backend.

Main API:
    from folderserver.store import FolderStore

    # Open or create a store
    store = FolderStore.open("/path/to/store")

    # Build a tree
    studies = store.repository.create_folder(store.root.id, "studies", owner_id="alice")

    # List a folder on behalf of a principal
    listing = store.service.contents_by_path(
        store.principal("alice"), "/studies", "folder,template", sort="-createdOn", limit=20)

    # Always close when done
    store.close()
"""

__version__ = "0.1.0"
