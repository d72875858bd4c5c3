"""Kütüphane Ödünç Sistemi - Çekirdek Uygulama Paketi

Bu paket aşağıdakiler dahil çekirdek uygulama modüllerini içerir:
- API uç noktaları (api.py)
- Ödünç verme akışı (orchestrator.py)
- Katalog ve kopya sayıları (ledger.py)
- Ödünç geçmişi (tracker.py)
- Hesaplar, oturumlar ve erişim denetimi (users.py, sessions.py, access.py)
- CLI arayüzü (cli.py)
- Veritabanı katmanı (database.py)
"""

__version__ = "1.0.0"
