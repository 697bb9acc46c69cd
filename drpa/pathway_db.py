#!/usr/bin/env python3
"""
Pathway Membership Databases
============================
Narrow query interface over an organism-filtered pathway database:

- list_pathways(): every pathway of the organism
- get_pathway(pathway_id): lookup by id
- pathways_for_gene(gene_id): lookup by gene

Implementations:
- InMemoryPathwayDatabase: dict / GMT backed (fixtures, offline runs)
- KEGGPathwayDatabase: KEGG REST API with a disk cache
"""

import hashlib
import json
import logging
import re
import time
from abc import ABC, abstractmethod
from collections import defaultdict
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Optional

import requests

from core.data_structures import PathwayRecord
from drpa.constants import KEGG_REST_URL, ORGANISM

logger = logging.getLogger(__name__)


class PathwayDatabase(ABC):
    """Read-only pathway membership lookups"""

    @abstractmethod
    def list_pathways(self) -> List[PathwayRecord]:
        """All pathways, ordered by pathway id"""

    @abstractmethod
    def get_pathway(self, pathway_id: str) -> Optional[PathwayRecord]:
        """Pathway by id, or None"""

    @abstractmethod
    def pathways_for_gene(self, gene_id: str) -> FrozenSet[str]:
        """Ids of the pathways containing a gene (empty if none)"""

    def all_genes(self) -> FrozenSet[str]:
        genes = set()
        for record in self.list_pathways():
            genes |= record.genes
        return frozenset(genes)

    def __len__(self):
        return len(self.list_pathways())


class InMemoryPathwayDatabase(PathwayDatabase):
    """Pathway database held in memory"""

    def __init__(self, records: Iterable[PathwayRecord]):
        self._records: Dict[str, PathwayRecord] = {}
        for record in records:
            if record.pathway_id in self._records:
                raise ValueError(f"Duplicate pathway id: {record.pathway_id}")
            self._records[record.pathway_id] = record

        self._gene_index: Dict[str, set] = defaultdict(set)
        for record in self._records.values():
            for gene in record.genes:
                self._gene_index[gene].add(record.pathway_id)

    @classmethod
    def from_dict(cls, pathways: Dict[str, Iterable[str]],
                  names: Optional[Dict[str, str]] = None) -> 'InMemoryPathwayDatabase':
        """Build from {pathway_id: genes}; names default to the id"""
        names = names or {}
        return cls(
            PathwayRecord(pid, names.get(pid, pid), frozenset(str(g) for g in genes))
            for pid, genes in pathways.items()
        )

    @classmethod
    def from_gmt(cls, path: str) -> 'InMemoryPathwayDatabase':
        """
        Load a GMT file: one pathway per line, tab-separated
        ``id<TAB>name<TAB>gene1<TAB>gene2...``.
        """
        gmt_path = Path(path)
        if not gmt_path.exists():
            raise FileNotFoundError(f"GMT file not found: {gmt_path}")

        records = []
        with open(gmt_path, 'r') as f:
            for line in f:
                parts = line.rstrip('\n').split('\t')
                if len(parts) < 2:
                    continue
                genes = frozenset(g for g in parts[2:] if g)
                records.append(PathwayRecord(parts[0], parts[1] or parts[0], genes))
        logger.info(f"Loaded {len(records)} pathways from {gmt_path.name}")
        return cls(records)

    def list_pathways(self) -> List[PathwayRecord]:
        return [self._records[pid] for pid in sorted(self._records)]

    def get_pathway(self, pathway_id: str) -> Optional[PathwayRecord]:
        return self._records.get(pathway_id)

    def pathways_for_gene(self, gene_id: str) -> FrozenSet[str]:
        return frozenset(self._gene_index.get(str(gene_id), ()))


# ============================================================================
# KEGG REST
# ============================================================================

class KEGGPathwayDatabase(PathwayDatabase):
    """
    KEGG pathways for one organism via https://rest.kegg.jp

    Endpoints:
    - /list/pathway/<org>: pathway id -> name
    - /link/<org>/pathway: pathway id -> gene (Entrez id for hsa)

    Responses are cached on disk for 7 days.
    """

    def __init__(self, organism: str = ORGANISM, cache_dir: str = "./api_cache",
                 base_url: str = KEGG_REST_URL, timeout: int = 60):
        self.organism = organism
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(exist_ok=True, parents=True)
        self._db: Optional[InMemoryPathwayDatabase] = None

    def _cache_file(self, endpoint: str) -> Path:
        hash_val = hashlib.md5(endpoint.encode()).hexdigest()[:12]
        return self.cache_dir / f"kegg_{hash_val}.json"

    def _fetch(self, endpoint: str) -> str:
        """GET a KEGG REST endpoint, using the disk cache when fresh"""
        cache_file = self._cache_file(endpoint)
        if cache_file.exists():
            with open(cache_file, 'r') as f:
                data = json.load(f)
            if time.time() - data.get('_cached_at', 0) < 7 * 24 * 3600:
                return data['result']

        url = f"{self.base_url}/{endpoint}"
        logger.info(f"Querying KEGG: {url}")
        response = requests.get(url, timeout=self.timeout)
        response.raise_for_status()

        with open(cache_file, 'w') as f:
            json.dump({'_cached_at': time.time(), 'result': response.text}, f)
        return response.text

    @staticmethod
    def _strip_prefix(token: str) -> str:
        return token.split(':', 1)[1] if ':' in token else token

    def _load(self) -> InMemoryPathwayDatabase:
        if self._db is not None:
            return self._db

        names = {}
        suffix = re.compile(r'\s+-\s+[^-]+\([^)]*\)\s*$')
        for line in self._fetch(f"list/pathway/{self.organism}").splitlines():
            if '\t' not in line:
                continue
            pid, name = line.split('\t', 1)
            names[self._strip_prefix(pid)] = suffix.sub('', name).strip()

        members: Dict[str, set] = defaultdict(set)
        for line in self._fetch(f"link/{self.organism}/pathway").splitlines():
            if '\t' not in line:
                continue
            pid, gene = line.split('\t', 1)
            members[self._strip_prefix(pid)].add(self._strip_prefix(gene.strip()))

        self._db = InMemoryPathwayDatabase(
            PathwayRecord(pid, names.get(pid, pid), frozenset(members.get(pid, ())))
            for pid in sorted(set(names) | set(members))
        )
        logger.info(f"Loaded {len(names)} KEGG pathways for {self.organism}")
        return self._db

    def list_pathways(self) -> List[PathwayRecord]:
        return self._load().list_pathways()

    def get_pathway(self, pathway_id: str) -> Optional[PathwayRecord]:
        return self._load().get_pathway(self._strip_prefix(pathway_id))

    def pathways_for_gene(self, gene_id: str) -> FrozenSet[str]:
        return self._load().pathways_for_gene(self._strip_prefix(str(gene_id)))
