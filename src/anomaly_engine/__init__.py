"""
Transaction Anomaly Detection Engine

계정별 거래 이력(직전 위치, 실행 평균 금액, 거래 간격, 금액 순위)과 비교하여
의심스러운 거래를 탐지하고 Alert를 기록합니다.
"""

__version__ = "0.1.0"
