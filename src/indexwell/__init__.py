# Indexwell – Hybrid content indexing and retrieval service
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""Indexwell – lease-based content indexing with hybrid vector + BM25 search."""

__version__ = "0.4.0"
