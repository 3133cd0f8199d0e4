"""
Hashing Utilities Module.

Provides SHA256 checksums for managed files and short MD5 digests used as
deduplication keys while scanning migration sources.
"""

import hashlib
from pathlib import Path
from typing import Union


# Default chunk size for reading files (8KB)
DEFAULT_CHUNK_SIZE = 8192


def hash_file(file_path: Union[str, Path], chunk_size: int = DEFAULT_CHUNK_SIZE) -> str:
    """
    Calculate SHA256 hash of a file's content.
    
    Reads file in chunks to handle large files efficiently without
    loading entire content into memory.
    
    Args:
        file_path: Path to the file to hash
        chunk_size: Size of chunks to read (default: 8192 bytes)
        
    Returns:
        Hexadecimal SHA256 hash string (64 characters)
        
    Raises:
        FileNotFoundError: If file does not exist
        PermissionError: If file cannot be read
        IsADirectoryError: If path is a directory
        
    Example:
        >>> hash_file("/managed-resumes/Acme_Engineer_2024-01-01.pdf")
        'e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855'
    """
    file_path = Path(file_path)
    sha256 = hashlib.sha256()
    
    with open(file_path, 'rb') as f:
        for chunk in iter(lambda: f.read(chunk_size), b''):
            sha256.update(chunk)
    
    return sha256.hexdigest()


def hash_content(content: Union[str, bytes]) -> str:
    """
    Calculate SHA256 hash of content (string or bytes).
    
    Used for the content_hash field of imported job.json documents.
    
    Args:
        content: String or bytes to hash. Strings are encoded as UTF-8.
        
    Returns:
        Hexadecimal SHA256 hash string (64 characters)
    """
    if isinstance(content, str):
        content = content.encode('utf-8')
    
    return hashlib.sha256(content).hexdigest()


def hash_string_md5(content: str, length: int = 32) -> str:
    """
    Calculate MD5 hash of a string, optionally truncated.
    
    Commonly used for generating short deduplication keys.
    
    Note: MD5 should not be used for security-sensitive applications.
    
    Args:
        content: String to hash
        length: Number of leading hex characters to keep
        
    Returns:
        Hexadecimal MD5 hash string
        
    Example:
        >>> hash_string_md5("Senior engineer wanted", length=8)
        'fb73132c'
    """
    return hashlib.md5(content.encode('utf-8')).hexdigest()[:length]
