"""
Services - coordinator, collaborators and the remote service client.
"""
