"""
Lookup services: datastore access, entity resolution and similarity search.
"""
