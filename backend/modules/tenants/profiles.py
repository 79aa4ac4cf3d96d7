"""
Built-in tenant profiles, keyed by Xero tenant id.

A document in the ``tenant_config`` collection with the same ``tenantId``
overrides any value here; tenants without a profile must be configured
entirely in Mongo.
"""

TENANT_PROFILES = {
    "6dd39ea4-e6a6-4993-a37a-21482ccf8d22": {
        "tenant_name": "Tenant 1",
        "company_domain": "api",
        "api_key_ref": "PIPEDRIVE_KEY_TENANT1",
        "pipeline_ids": [2],
        "pipeline_names": {2: "Work In Progress"},
        "invoice_stage_id": 6,
        "custom_field_mapping": {
            "quote_number": "a0b59ccf244af998aa57a01f22e2ffd41cf504f9",
            "invoice_id": "c599cab3902b6c84c1f9e2689f308a4369fffe7d",
            "invoice_number": "77e6c22c25774c19c846dcafc78ab79299f3635c",
            "status": "7e3a9d4941be08c210be9294d4503ba781f7d79e",
            "ipc": "9b493336b9f01af388a5a50b53a98a57f6df8b9a",
            "xero_quote_id": "0e9dc89b14fb67546540fd3e11a7fe06653d708f",
            "ref_number": "c9c9206bd3ec741541e8a4f9f7395aee69d243df",
            "location": "ab6f8ba40052e512a64b575b592dba4f2dee7a6d",
            "person_in_charge": "e112e892add78412634256facf963d04e0488de0",
            "mo_number": "176062c9320cc5d330edb205b3378c802c3e27aa",
            "wo_number": "e92f0f8368659e80770910970f19d72ad6e3f284",
            "vessel_name": "bef5a8a5866aec2d7f4db2a5d8964ab04a4dc93d",
            "department": "b1ccab4cb2fd2179aaceddf107187b70b48d9cb7",
        },
    },
    "ea67107e-c352-40a9-a8b8-24d81ae3fc85": {
        "tenant_name": "Tenant 2 (BSENI)",
        "company_domain": "bseni",
        "api_key_ref": "PIPEDRIVE_KEY_TENANT2",
        "pipeline_ids": [3, 4, 5, 6, 7, 8, 9, 16],
        "pipeline_names": {
            2: "Unqualified",
            3: "WIP - Engine Recon",
            4: "WIP - Machine Shop",
            5: "WIP - Laser Cladding",
            6: "WIP - Afloat Repairs",
            7: "WIP - Engine Overhauling",
            8: "WIP - Electricals",
            9: "WIP - Mechanical",
            16: "WIP - Navy",
        },
        "unqualified_pipeline_ids": [2],
        "title_scope": "all",
        "required_fields": {
            "xero_quote_id": "error",
            "quote_number": "error",
            "project_code": "error",
            "vessel_name": "warning",
            "department": "warning",
            "location": "warning",
            "person_in_charge": "warning",
        },
        "custom_field_mapping": {
            "wopq_number": "8a3fabdbd16595e1dc83d75327312eba71bbb0a4",
            "ipc": "0be49a5ee144f20b90168670b3a3f8f9b18977ae",
            "vessel_name": "ecb34e26525067dd1a426c0c59909a8797a85e54",
            "department": "baad1beac0e8ba5a000dc82f7f1d2d9fd45b10a7",
            "location": "d5db80cbb7d8612c676482c73a15c43a06b60e09",
            "person_in_charge": "87813f40f660dde69c31412d52136e16552afeb2",
            "xero_quote_id": "1f21104ccb95f5a4773ef52cd0c2cc1c78203f69",
            "quote_number": "a52165a056d57cabba309ec5e53d7a6cd47ea766",
            "invoice_id": "8c5c696440f023067a49103a15b60ff6ae6e3243",
            "invoice_number": "b0d383d6f828cae7cb5c80b5f3144b3d0e8b9419",
            "status": "892488671894031e384be7f94012c12215f60ca8",
            "vessel_type": "2541f907abda866a9e04ff51004fca9f60c83f03",
            "sales_reference": "6ec23a25a64aa044f0e57d1180d2ad8b7bdb43b9",
        },
    },
}
