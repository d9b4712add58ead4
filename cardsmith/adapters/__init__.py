"""Adapters for external systems: files, templates, network, block devices."""

from cardsmith.adapters.file_adapter import FileSystemAdapter, create_file_adapter
from cardsmith.adapters.template_adapter import TemplateAdapter


__all__ = ["FileSystemAdapter", "TemplateAdapter", "create_file_adapter"]
