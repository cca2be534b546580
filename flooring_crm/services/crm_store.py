"""
Supabase-backed CRM storage

All persistent CRM state (clients, projects, estimates, invoices, material
orders, damage reports, payments and connector settings) lives in the hosted
Supabase project.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Any, Optional

from supabase import create_client, Client

logger = logging.getLogger(__name__)

CLIENTS_TABLE = "clients"
PROJECTS_TABLE = "projects"
ESTIMATES_TABLE = "estimates"
MATERIAL_ORDERS_TABLE = "material_orders"
INSTALLATIONS_TABLE = "installations"
INVOICES_TABLE = "invoices"
DAMAGE_REPORTS_TABLE = "damage_reports"
INTEGRATIONS_TABLE = "integration_settings"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class CRMStore:
    """CRM persistence on top of the Supabase client"""

    def __init__(self, supabase_url: str = "", supabase_key: str = "", client: Optional[Client] = None):
        if client is None:
            if not supabase_url or not supabase_key:
                raise ValueError("SUPABASE_URL and SUPABASE_ANON_KEY are required")
            client = create_client(supabase_url, supabase_key)
            logger.info(f"✅ CRM store initialized: {supabase_url}")
        self.supabase: Client = client

    @staticmethod
    def new_id() -> str:
        return str(uuid.uuid4())

    async def _insert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        try:
            record = {'id': self.new_id(), **record}
            result = self.supabase.table(table).insert(record).execute()
            data = result.data[0] if result.data else record
            logger.info(f"✅ Inserted into {table}: {data.get('id')}")
            return {'success': True, 'data': data}
        except Exception as e:
            logger.error(f"❌ Error inserting into {table}: {e}")
            return {'success': False, 'error': str(e)}

    # ===== CLIENTS =====

    async def create_client(self, client_data: Dict[str, Any]) -> Dict[str, Any]:
        if not client_data.get('name'):
            return {'success': False, 'error': 'Client name is required'}
        return await self._insert(CLIENTS_TABLE, {**client_data, 'created_at': _now()})

    async def list_clients(self) -> List[Dict[str, Any]]:
        try:
            result = self.supabase.table(CLIENTS_TABLE).select('*').order('name').execute()
            return result.data or []
        except Exception as e:
            logger.error(f"❌ Error listing clients: {e}")
            return []

    async def search_clients(self, query: str) -> List[Dict[str, Any]]:
        query = (query or '').strip()
        if not query:
            return []
        try:
            pattern = f"%{query}%"
            result = (
                self.supabase.table(CLIENTS_TABLE)
                .select('*')
                .or_(f"name.ilike.{pattern},company.ilike.{pattern},email.ilike.{pattern}")
                .execute()
            )
            return result.data or []
        except Exception as e:
            logger.error(f"❌ Error searching clients for '{query}': {e}")
            return []

    # ===== PROJECTS =====

    async def get_project(self, project_id: str) -> Optional[Dict[str, Any]]:
        try:
            result = self.supabase.table(PROJECTS_TABLE).select('*').eq('id', project_id).execute()
            return result.data[0] if result.data else None
        except Exception as e:
            logger.error(f"❌ Error getting project {project_id}: {e}")
            return None

    async def list_projects(self) -> List[Dict[str, Any]]:
        try:
            result = self.supabase.table(PROJECTS_TABLE).select('*').execute()
            return result.data or []
        except Exception as e:
            logger.error(f"❌ Error listing projects: {e}")
            return []

    async def save_project(self, project: Dict[str, Any]) -> Dict[str, Any]:
        try:
            record = {**project, 'updated_at': _now()}
            result = self.supabase.table(PROJECTS_TABLE).upsert(record).execute()
            data = result.data[0] if result.data else record
            return {'success': True, 'data': data}
        except Exception as e:
            logger.error(f"❌ Error saving project {project.get('id')}: {e}")
            return {'success': False, 'error': str(e)}

    # ===== ESTIMATES / ORDERS / INSTALLATIONS =====

    async def create_estimate(self, estimate: Dict[str, Any]) -> Dict[str, Any]:
        return await self._insert(ESTIMATES_TABLE, {**estimate, 'created_at': _now()})

    async def create_material_order(self, order: Dict[str, Any]) -> Dict[str, Any]:
        return await self._insert(MATERIAL_ORDERS_TABLE, {**order, 'status': 'requested', 'created_at': _now()})

    async def create_installation(self, installation: Dict[str, Any]) -> Dict[str, Any]:
        return await self._insert(INSTALLATIONS_TABLE, {**installation, 'created_at': _now()})

    async def get_estimate_by_token(self, share_token: str) -> Optional[Dict[str, Any]]:
        try:
            result = self.supabase.table(ESTIMATES_TABLE).select('*').eq('share_token', share_token).execute()
            return result.data[0] if result.data else None
        except Exception as e:
            logger.error(f"❌ Error loading shared estimate: {e}")
            return None

    # ===== INVOICES =====

    async def list_invoices(self) -> List[Dict[str, Any]]:
        try:
            result = self.supabase.table(INVOICES_TABLE).select('*').execute()
            return result.data or []
        except Exception as e:
            logger.error(f"❌ Error listing invoices: {e}")
            return []

    # ===== DAMAGE REPORTS =====

    async def save_damage_report(self, report: Dict[str, Any]) -> Dict[str, Any]:
        return await self._insert(DAMAGE_REPORTS_TABLE, {**report, 'created_at': _now()})

    async def list_damage_reports(self, client_id: Optional[str] = None) -> List[Dict[str, Any]]:
        try:
            query = self.supabase.table(DAMAGE_REPORTS_TABLE).select('*').order('created_at', desc=True)
            if client_id:
                query = query.eq('client_id', client_id)
            result = query.execute()
            return result.data or []
        except Exception as e:
            logger.error(f"❌ Error listing damage reports: {e}")
            return []

    # ===== RPC =====

    async def call_rpc(self, function_name: str, params: Dict[str, Any]) -> Any:
        """Call a database function; errors propagate to the caller"""
        result = self.supabase.rpc(function_name, params).execute()
        return result.data

    # ===== CONNECTOR SETTINGS =====

    async def get_integration_settings(self, integration: str) -> Optional[Dict[str, Any]]:
        try:
            result = (
                self.supabase.table(INTEGRATIONS_TABLE)
                .select('*')
                .eq('integration', integration)
                .execute()
            )
            if not result.data:
                return None
            return result.data[0].get('settings') or {}
        except Exception as e:
            logger.error(f"❌ Error loading {integration} settings: {e}")
            return None

    async def save_integration_settings(self, integration: str, settings: Dict[str, Any]) -> bool:
        try:
            record = {'integration': integration, 'settings': settings, 'updated_at': _now()}
            self.supabase.table(INTEGRATIONS_TABLE).upsert(record, on_conflict='integration').execute()
            logger.info(f"✅ Saved {integration} settings")
            return True
        except Exception as e:
            logger.error(f"❌ Error saving {integration} settings: {e}")
            return False

    async def delete_integration_settings(self, integration: str) -> bool:
        try:
            self.supabase.table(INTEGRATIONS_TABLE).delete().eq('integration', integration).execute()
            logger.info(f"🗑️ Removed {integration} settings")
            return True
        except Exception as e:
            logger.error(f"❌ Error removing {integration} settings: {e}")
            return False
