"""Chunked file transfer between room peers.

Provides:
    - TransferSender: splits queued files into chunks, three files at a time.
    - ReceptionAssembler: rebuilds byte-exact payloads from relayed chunks.
    - FolderAggregator: groups received files by top-level folder and saves
      them as a directory tree or a ZIP archive.
"""
