"""
Orchestration of the per-service collectors
"""
import logging
from abc import ABC, abstractmethod

from .exceptions import PawsError
from .tree import AuditTree

logger = logging.getLogger(__name__)


class Collector(ABC):
    """
    Base class for a per-service collector.

    A collector builds one subtree and returns it; the orchestrator stores it
    at `target`. Collectors may read subtrees written before them but never
    write to the tree themselves.
    """

    target = None

    @abstractmethod
    def name(self):
        """Short name used in logs and errors"""

    @abstractmethod
    def populate(self, session, tree):
        """
        Build this collector's subtree.

        Args:
            session: Boto3 session shared by all collectors
            tree: AuditTree with the subtrees of earlier collectors

        Returns:
            Subtree value to store at `target`

        Raises:
            PawsError: On any failure; the audit is aborted
        """


def default_collectors():
    """Return the collectors of a full audit, in execution order"""
    from .crossref import PolicyCrossReferencer
    from .iam import IdentityCollector
    from .kms import KeyCollector

    return [
        IdentityCollector(),
        KeyCollector(),
        PolicyCrossReferencer(),
    ]


class Orchestrator:
    """Runs collectors one after another and assembles the audit tree"""

    def __init__(self, collectors=None):
        self.collectors = list(collectors) if collectors is not None else default_collectors()

    def run(self, session):
        """
        Run every collector in order against one session.

        The first failure stops the run; no tree is returned in that case.

        Args:
            session: Boto3 session

        Returns:
            AuditTree: Tree with one subtree per collector
        """
        tree = AuditTree()
        for collector in self.collectors:
            logger.info("Running %s collector", collector.name())
            try:
                subtree = collector.populate(session, tree)
            except PawsError as e:
                logger.error("%s collector failed, aborting audit: %s", collector.name(), e)
                raise
            tree.audit.attach(collector.target, subtree)
        logger.info("Audit completed with %d collectors", len(self.collectors))
        return tree


def run_audit(session, collectors=None):
    """
    Run a complete audit.

    Args:
        session: Boto3 session
        collectors: Optional list of collectors, defaults to IAM, KMS and the
            IAM/KMS policy cross-reference

    Returns:
        AuditTree
    """
    return Orchestrator(collectors).run(session)
