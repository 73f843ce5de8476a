import logging
from motor.motor_asyncio import AsyncIOMotorClient
from procurement.config import settings
from procurement.repositories.purchase_request import PurchaseRequestRepository
from procurement.repositories.user import UserRepository
from procurement.repositories.config import BranchRuleRepository
from procurement.repositories.audit import AuditRepository
from procurement.models.purchase_request import PurchaseRequest
from procurement.models.user import User, BranchApprovalRule
from procurement.models.audit import AuditEvent

logger = logging.getLogger(__name__)

class Database:
    client: AsyncIOMotorClient = None

    # Repositories
    purchase_requests: PurchaseRequestRepository = None
    users: UserRepository = None
    branch_rules: BranchRuleRepository = None
    audit: AuditRepository = None

    def connect(self):
        """Initialize database connection and repositories."""
        self.client = AsyncIOMotorClient(settings.MONGODB_URL)
        db = self.client[settings.DB_NAME]
        self.bind(db)
        logger.info(f"Connected to MongoDB database {settings.DB_NAME}")

    def bind(self, db):
        """Attach repositories to a database handle (a motor database or a test double)."""
        self.purchase_requests = PurchaseRequestRepository(db.purchase_requests, PurchaseRequest)
        self.users = UserRepository(db.users, User)
        self.branch_rules = BranchRuleRepository(db.branch_approval_rules, BranchApprovalRule)
        self.audit = AuditRepository(db.audit_log, AuditEvent)

    def close(self):
        """Close database connection."""
        if self.client:
            self.client.close()
            logger.info("Disconnected from MongoDB")

db = Database()
