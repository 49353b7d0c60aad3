"""
Download pipeline services: metadata resolution, cache install, shard
handling and the orchestrating HubDownloadService.
"""
